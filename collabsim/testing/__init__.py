from collabsim.testing.fake_server import FakeServer, Connection, ACCESS_TOKEN
from collabsim.testing.observer import Observer
from collabsim.testing.fixtures import sample_text, temp_tree
from collabsim.testing.log import init_logger
