import asyncio
import logging
import json
import secrets
from typing import List, Optional
from pathlib import Path
import argparse
import sys

from config.config import RegistryConfig, StoreConfig, load_config
from errors import RegistryError
from merkle.accumulator import MerkleAccumulator
from registry.local_chain import InMemoryRegistryChain
from utils.utils import setup_logging, save_results
from voter_registry_system import VoterRegistrySystem
from zk.field import FIELD_PRIME

logger = logging.getLogger(__name__)


def random_identifier() -> str:
    """Random bytes32 identifier below the field prime"""
    return '0x' + format(secrets.randbelow(FIELD_PRIME), '064x')


def read_identifiers(values: Optional[List[str]], path: Optional[str]) -> List[str]:
    identifiers = list(values or [])
    if path:
        with open(path, 'r') as f:
            identifiers.extend(line.strip() for line in f if line.strip())
    return identifiers


async def run_demo(config: RegistryConfig, num_voters: int = 8, election_id: int = 1) -> bool:
    print("=" * 80)
    print("VOTER REGISTRY - MERKLE MEMBERSHIP DEMONSTRATION")
    print("   Poseidon (BN254) tree, chain-first registration, verified proofs")
    print("=" * 80)

    config.store = StoreConfig(database_url="sqlite:///:memory:")
    system = VoterRegistrySystem(config, chain=InMemoryRegistryChain())

    try:
        voters = [random_identifier() for _ in range(num_voters)]

        print(f"\nRegistering {num_voters} voters for election {election_id}...")
        result = await system.register_voters(election_id, voters)
        print(f"   Registered: {len(result.accepted)}  Skipped: {len(result.rejected)}")
        print(f"   Transaction: {result.transaction_hash} (block {result.block_number})")
        print(f"   Merkle root: {result.merkle_root.to_hex()}")

        print("\nPublishing root on-chain...")
        publication = await system.publish_root(election_id)
        print(f"   Root transaction: {publication.transaction_hash}")

        print("\nGenerating and replaying membership proofs...")
        accumulator = MerkleAccumulator(system.hasher)
        proofs = []
        all_valid = True
        for position, voter in enumerate(voters):
            proof = await system.get_proof(election_id, voter)
            valid = accumulator.verify_proof(
                voter, proof.sibling_path, proof.internal_direction_bits(), proof.root)
            all_valid = all_valid and valid
            proofs.append(proof.to_wire())
            print(f"   voter {position:03d}: path length {len(proof.sibling_path)} "
                  f"{'VALID' if valid else 'INVALID'}")

        print("\nChecking non-membership...")
        try:
            await system.get_proof(election_id, random_identifier())
            print("   Unregistered identifier received a proof: FAILED")
            all_valid = False
        except RegistryError as e:
            print(f"   Unregistered identifier rejected: {e.kind}")

        metrics = system.get_system_metrics()
        print("\nPerformance:")
        for operation, stats in metrics['performance']['operations'].items():
            print(f"   {operation}: {stats['count']}x, avg {stats['avg_duration'] * 1000:.1f}ms")

        report_path = config.results_dir / "registry_demo_report.json"
        save_results({
            'election_id': election_id,
            'registration': result.to_dict(),
            'root_publication': publication.to_dict(),
            'proofs': proofs,
            'all_proofs_valid': all_valid,
            'metrics': metrics,
        }, report_path)
        print(f"\nFull results saved to: {report_path}")

        return all_valid
    finally:
        system.close()


async def run_command(args, config: RegistryConfig) -> int:
    system = VoterRegistrySystem(config)
    try:
        await system.initialize()

        if args.mode == 'register':
            identifiers = read_identifiers(args.identifier, args.identifiers_file)
            if not identifiers:
                print("No identifiers given (use --identifier or --identifiers-file)")
                return 2
            output = (await system.register_voters(args.election_id, identifiers)).to_dict()
        elif args.mode == 'root':
            root = await system.compute_root(args.election_id)
            output = {'electionId': str(args.election_id), 'merkleRoot': root.to_hex()}
        elif args.mode == 'publish-root':
            output = (await system.publish_root(args.election_id)).to_dict()
        elif args.mode == 'proof':
            if not args.identifier:
                print("--identifier is required for proof mode")
                return 2
            output = (await system.get_proof(args.election_id, args.identifier[0])).to_wire()
        elif args.mode == 'reconcile':
            output = (await system.reconcile(args.election_id)).to_dict()
        else:
            raise ValueError(f"Unsupported mode {args.mode}")

        print(json.dumps(output, indent=2))
        return 0

    except RegistryError as e:
        logger.error(f"{args.mode} failed: {e.kind}: {e.message}")
        print(json.dumps({'success': False, 'error': e.to_dict()}, indent=2))
        return 1
    finally:
        system.close()


def serve(config: RegistryConfig):
    system = VoterRegistrySystem(config)
    app = system.create_app()
    logger.info(f"Serving registry API on {config.api.host}:{config.api.port}")
    try:
        app.run(host=config.api.host, port=config.api.port, debug=config.enable_debug_mode)
    finally:
        system.close()


def main():
    parser = argparse.ArgumentParser(
        description='Privacy-preserving voter registry and Merkle proof service')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument(
        '--mode',
        choices=['demo', 'register', 'root', 'publish-root', 'proof', 'reconcile', 'serve'],
        default='demo')
    parser.add_argument('--election-id', type=int, default=1,
                        help='Election id (uint256)')
    parser.add_argument('--identifier', action='append',
                        help='Voter identifier as 0x-prefixed bytes32 (repeatable)')
    parser.add_argument('--identifiers-file', type=str,
                        help='File with one identifier per line')
    parser.add_argument('--voters', type=int, default=8,
                        help='Number of voters for demo mode')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging(config.log_level, log_dir=config.log_dir)

    if args.mode == 'demo':
        success = asyncio.run(run_demo(config, args.voters, args.election_id))
        sys.exit(0 if success else 1)
    elif args.mode == 'serve':
        serve(config)
    else:
        sys.exit(asyncio.run(run_command(args, config)))


if __name__ == "__main__":
    main()
