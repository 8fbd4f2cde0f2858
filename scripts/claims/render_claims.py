#!/usr/bin/env python3
"""Render the IPAMClaims the controller would create for a set of manifests."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

REPO_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from kubevirt_ipam.exceptions import IPAMError  # noqa: E402
from kubevirt_ipam.objects import (  # noqa: E402
    KINDS,
    IPAMClaim,
    KubeObject,
    NamespacedName,
    VirtualMachineInstance,
)
from kubevirt_ipam.reconciler import VMIReconciler  # noqa: E402
from kubevirt_ipam.store import InMemoryStore  # noqa: E402


LOG = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "manifests",
        type=Path,
        nargs="+",
        help="YAML files holding VMs, VMIs, NADs and existing IPAMClaims",
    )
    parser.add_argument(
        "--vmi",
        action="append",
        default=[],
        metavar="NAMESPACE/NAME",
        help="Only reconcile these VMIs (default: every VMI found)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the rendered claims here instead of stdout",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def load_objects(paths: Iterable[Path]) -> List[KubeObject]:
    objects: List[KubeObject] = []
    for path in paths:
        with path.open() as fh:
            for document in yaml.safe_load_all(fh):
                if not document:
                    continue
                kind = document.get("kind")
                if kind not in KINDS:
                    LOG.debug("skipping unsupported kind %s in %s", kind, path)
                    continue
                objects.append(KINDS[kind].from_dict(document))
    return objects


def parse_key(value: str) -> NamespacedName:
    namespace, sep, name = value.partition("/")
    if not sep or not namespace or not name:
        raise ValueError(f"expected NAMESPACE/NAME, got '{value}'")
    return NamespacedName(namespace, name)


def render_claims(objects: Iterable[KubeObject], keys: Iterable[NamespacedName] = ()) -> str:
    store = InMemoryStore(*objects)
    reconciler = VMIReconciler(store)

    targets = list(keys) or [obj.key for obj in store.dump(VirtualMachineInstance.KIND)]
    for key in targets:
        try:
            result = reconciler.reconcile(key)
        except IPAMError as exc:
            LOG.error("reconcile of %s failed: %s", key, exc)
            continue
        for name, outcome in result.claims.items():
            LOG.info("%s: IPAMClaim %s %s", key, name, outcome.value)

    claims = [claim.to_dict() for claim in store.dump(IPAMClaim.KIND)]
    return yaml.safe_dump_all(claims, sort_keys=False)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    rendered = render_claims(
        load_objects(args.manifests), [parse_key(v) for v in args.vmi]
    )
    if not rendered.strip():
        LOG.warning("No IPAMClaims were rendered (check the NAD allowPersistentIPs flags)")

    if args.output is None:
        sys.stdout.write(rendered)
    else:
        args.output.write_text(rendered)
        LOG.info("Rendered claims written to %s", args.output)


if __name__ == "__main__":
    main()
