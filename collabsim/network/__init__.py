from collabsim.network.rng import gen_range, seeded_rng
from collabsim.network.simulator import Envelope, Network, MIN_COPIES, MAX_COPIES
from collabsim.network.replica import OpLogReplica, Operation
