#!/usr/bin/env python3
"""collabsim convergence run — drive op-log replicas over the simulated network.

Each replica appends a few local values and broadcasts them; the loop then
keeps delivering random inbox prefixes until the network is idle, and checks
that every replica ended with the same log.

Usage:
  # Three replicas, five ops each, seed 0
  python3 run_simulation.py

  # Reproduce a specific schedule with debug traffic logs
  python3 run_simulation.py --seed 1234 --replicas 5 --ops 20 --verbose

  # Sweep many seeds
  python3 run_simulation.py --seeds 200
"""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from collabsim.network import Network, OpLogReplica, seeded_rng

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("collabsim-run")


def simulate(seed: int, replica_count: int, ops_per_replica: int) -> dict:
    """Run one seeded scenario. Returns a summary dict."""
    rng = seeded_rng(seed)
    network = Network(rng)
    replicas = [OpLogReplica(i) for i in range(replica_count)]
    for replica in replicas:
        network.add_peer(replica.replica_id)

    # Interleave local edits with partial deliveries
    rounds = 0
    for step in range(ops_per_replica):
        for replica in replicas:
            op = replica.append(f"r{replica.replica_id}-op{step}")
            network.broadcast(replica.replica_id, [op])
        for replica in replicas:
            replica.apply(network.receive(replica.replica_id))
        rounds += 1

    while not network.is_idle():
        for replica in replicas:
            replica.apply(network.receive(replica.replica_id))
        rounds += 1

    logs = [replica.values() for replica in replicas]
    return {
        "seed": seed,
        "rounds": rounds,
        "broadcast": len(network.all_messages),
        "duplicates": sum(r.duplicates_ignored for r in replicas),
        "converged": all(log == logs[0] for log in logs),
        "length": len(logs[0]),
    }


def main():
    parser = argparse.ArgumentParser(description="collabsim network convergence run")
    parser.add_argument("--seed", type=int, default=0, help="PRNG seed (default: 0)")
    parser.add_argument("--seeds", type=int, default=1, help="Run this many consecutive seeds (default: 1)")
    parser.add_argument("--replicas", type=int, default=3, help="Number of replicas (default: 3)")
    parser.add_argument("--ops", type=int, default=5, help="Local ops per replica (default: 5)")
    parser.add_argument("--verbose", action="store_true", help="Log every broadcast and delivery")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger("collabsim").setLevel(logging.DEBUG)

    failures = 0
    for seed in range(args.seed, args.seed + args.seeds):
        summary = simulate(seed, args.replicas, args.ops)
        if not summary["converged"]:
            failures += 1
            logger.error(f"seed={seed} DIVERGED")
        logger.info(
            f"seed={seed} rounds={summary['rounds']} ops={summary['broadcast']} "
            f"dups={summary['duplicates']} log={summary['length']} converged={summary['converged']}"
        )

    logger.info(f"DONE | {args.seeds} seeds, {failures} diverged")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
