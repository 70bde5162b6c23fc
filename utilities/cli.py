import argparse
import logging

import urllib3
from ocp_resources.resource import get_client

from utilities.config import KmmConfiguration
from utilities.mco import classify_node_transition
from utilities.node import current_config, desired_config, is_node_ready, list_nodes, mco_state

LOGGER = logging.getLogger(__name__)


def format_node_state(snapshot):
    return (
        f"{snapshot.name}\t{classify_node_transition(snapshot=snapshot).value}\t"
        f"ready={is_node_ready(snapshot=snapshot)}\tstate={mco_state(snapshot) or '-'}\t"
        f"current={current_config(snapshot=snapshot) or '-'}\tdesired={desired_config(snapshot=snapshot) or '-'}\t"
        f"bootID={snapshot.boot_id or '-'}"
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Print the MachineConfig transition state of worker nodes")
    parser.add_argument(
        "--conf",
        type=str,
        dest="conf",
        help="KMM configuration file",
    )
    parser.add_argument(
        "--kubeconfig",
        type=str,
        dest="kubeconfig",
        help="kubeconfig file, defaults to in-cluster or ~/.kube/config",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        dest="verbose",
        help="log cluster reads",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv=argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    conf = KmmConfiguration.from_env(filename=args.conf)
    client = get_client(config_file=args.kubeconfig)

    snapshots = list_nodes(client=client, label_map=conf.worker_label_map)
    if not snapshots:
        LOGGER.warning(f"No nodes match {conf.worker_label_map}")
        return 1

    for snapshot in snapshots:
        print(format_node_state(snapshot=snapshot))

    return 0
