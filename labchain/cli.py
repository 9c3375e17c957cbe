from __future__ import annotations

import argparse
import getpass as _getpass
import os
import sys
import time
from typing import List

from labchain.chain import PrintingMiningListener
from labchain.config import LabConfig, split_remove_empty
from labchain.constants import LAB_PREFIX_FILE, MIN_RSA_KEY_BITS, RSA_KEY_BITS
from labchain.errors import LabError
from labchain.experiment import clean, create_from_paths, open_experiment, save
from labchain.hashutil import encode_hash
from labchain.keystore import public_key_bytes
from labchain.node import Node, get_node, init_node


def _password(confirm: bool = False) -> str:
    pw = os.getenv("LAB_PASSWORD")
    if pw is not None:
        return pw
    pw = _getpass.getpass("Password: ")
    if confirm and _getpass.getpass("Confirm password: ") != pw:
        raise ValueError("Passwords do not match")
    return pw


def _key_bits(value: str) -> int:
    bits = int(value)
    if bits < MIN_RSA_KEY_BITS:
        raise argparse.ArgumentTypeError(f"must be at least {MIN_RSA_KEY_BITS}")
    return bits


def _listener(quiet: bool):
    return None if quiet else PrintingMiningListener(sys.stdout)


def print_node(node: Node) -> None:
    print(node.alias)
    print(encode_hash(public_key_bytes(node.key)))


def cmd_init(config: LabConfig, *, key_bits: int = RSA_KEY_BITS, quiet: bool = False) -> bool:
    """Generate the key pair (if missing) and register the alias.

    Args:
        config: Runtime configuration.
        key_bits: RSA modulus size for a newly generated key.
    """
    with init_node(config, _password(confirm=True), _listener(quiet), bits=key_bits) as node:
        print("Initialized")
        print_node(node)
    return True


def cmd_create(config: LabConfig, inputs: list[str], *, quiet: bool = False) -> bool:
    """Create a new experiment from filesystem paths and print its id."""
    for p in inputs:
        if not os.path.lexists(p):
            raise FileNotFoundError(f"No such file or directory: {p}")
    t0 = time.time()
    with get_node(config, _password()) as node:
        experiment = create_from_paths(node, _listener(quiet), *inputs, threshold=config.threshold)
        files = sum(1 for name in node.channels if name.startswith(LAB_PREFIX_FILE))
    dt = max(0.000001, time.time() - t0)
    print(f"Done: {files} files in {dt:.1f}s")
    print(experiment.id)
    return True


def cmd_open(config: LabConfig, experiment_id: str) -> bool:
    with get_node(config, _password()) as node:
        experiment = open_experiment(node, experiment_id, threshold=config.threshold)
        head = encode_hash(experiment.path.head) if experiment.path.head else "-"
        print(f"{experiment.id}\t{experiment.path.name}\t{head}")
    return experiment.path.head is not None


def cmd_save(config: LabConfig, experiment_id: str, outdir: str, *, quiet: bool = False) -> bool:
    """Save (reconstruct) an experiment's files below ``outdir``."""
    with get_node(config, _password()) as node:
        experiment = open_experiment(node, experiment_id, threshold=config.threshold)
        if experiment.path.head is None:
            print(f"Error: unknown experiment {experiment_id}", file=sys.stderr)
            return False
        written = save(node, experiment, outdir)
    if not quiet:
        for path in written:
            print(f"   saving: {path}")
    print(f"Done: {len(written)} files")
    return True


def cmd_clean(config: LabConfig, experiment_id: str) -> bool:
    with get_node(config, _password()) as node:
        clean(node, experiment_id)
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="labchain",
        description="Archive directories into signed append-only delta chains and save them back",
    )
    ap.add_argument("--peer", default="", help="Comma separated peer cache directories")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_init = sub.add_parser("init", help="Generate a key pair and register the alias")
    ap_init.add_argument("--key-bits", type=_key_bits, default=RSA_KEY_BITS, help=f"RSA key size (default {RSA_KEY_BITS})")
    ap_init.add_argument("--quiet", help="do not print mining progress", action="store_true")

    ap_create = sub.add_parser("create", help="Create a new experiment from the given paths")
    ap_create.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_create.add_argument("--quiet", help="do not print mining progress", action="store_true")

    ap_open = sub.add_parser("open", help="Open an existing experiment")
    ap_open.add_argument("experiment", help="Experiment id")

    ap_save = sub.add_parser("save", help="Save an existing experiment to the given path")
    ap_save.add_argument("experiment", help="Experiment id")
    ap_save.add_argument("path", help="Output directory")
    ap_save.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_clean = sub.add_parser("clean", help="Reserved; currently does nothing")
    ap_clean.add_argument("experiment", help="Experiment id")

    args = ap.parse_args(argv)
    try:
        config = LabConfig.from_env().with_peers(split_remove_empty(args.peer, ","))
        if args.cmd == "init":
            success = cmd_init(config, key_bits=args.key_bits, quiet=args.quiet)
        elif args.cmd == "create":
            success = cmd_create(config, args.inputs, quiet=args.quiet)
        elif args.cmd == "open":
            success = cmd_open(config, args.experiment)
        elif args.cmd == "save":
            success = cmd_save(config, args.experiment, args.path, quiet=args.quiet)
        elif args.cmd == "clean":
            success = cmd_clean(config, args.experiment)
        else:
            raise RuntimeError("Unknown command")
        sys.exit(0 if success else 1)
    except (LabError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
