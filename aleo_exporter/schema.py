#!/usr/bin/env python3
"""
Metric schema

Immutable table of the gauges the exporter exposes. The table is built once
at startup and handed to the collector, which turns each NodeState into one
sample per entry.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .state import BLOCKS_MINED_THRESHOLD, NodeState

NAMESPACE = 'aleo'
CHANNEL_LABEL = 'channel'


def build_fqname(namespace: str, name: str) -> str:
    """Join namespace and metric name the way Prometheus client libraries do"""
    return f"{namespace}_{name}" if namespace else name


@dataclass(frozen=True)
class MetricSpec:
    """
    One exposed gauge.

    ``value`` extracts the numeric value from a NodeState. ``label`` names a
    NodeState attribute exposed as a label; such gauges always report 1.
    """

    name: str
    documentation: str
    value: Optional[Callable[[NodeState], float]] = None
    label: Optional[Tuple[str, str]] = None

    @property
    def labelnames(self) -> Tuple[str, ...]:
        return (self.label[0],) if self.label else ()

    def label_values(self, state: NodeState) -> Tuple[str, ...]:
        return (str(getattr(state, self.label[1])),) if self.label else ()

    def sample_value(self, state: NodeState) -> float:
        if self.label:
            return 1.0
        return float(self.value(state))


@dataclass(frozen=True)
class MetricSchema:
    """Namespaced, ordered set of MetricSpecs"""

    namespace: str
    up_name: str
    up_documentation: str
    metrics: Tuple[MetricSpec, ...]

    def fqname(self, spec: MetricSpec) -> str:
        return build_fqname(self.namespace, spec.name)

    @property
    def up_fqname(self) -> str:
        return build_fqname(self.namespace, self.up_name)


def _field(attribute: str) -> Callable[[NodeState], float]:
    return lambda state: getattr(state, attribute)


def build_schema(namespace: str = NAMESPACE) -> MetricSchema:
    """Return the node status schema"""
    metrics = (
        MetricSpec('type', 'Type of node.', label=('type', 'node_type')),
        MetricSpec('status', 'Node status.', label=('status', 'status')),
        MetricSpec('connected_sync_nodes', 'Number of connected sync nodes.',
                   value=_field('connected_sync_nodes')),
        MetricSpec('connected_peers', 'Number of connected peers.',
                   value=_field('connected_peers')),
        MetricSpec('candidate_peers', 'Number of candidate peers.',
                   value=_field('candidate_peers')),
        MetricSpec('cumulative_weight', 'Cumulative weight of the latest block.',
                   value=_field('cumulative_weight')),
        MetricSpec('latest_block_height', 'Latest block height of node.',
                   value=_field('latest_block_height')),
        MetricSpec('blocks_mined', f'Blocks mined after block {BLOCKS_MINED_THRESHOLD}.',
                   value=_field('blocks_mined_after_threshold')),
        MetricSpec('blocks_mined_calibrate', f'Blocks mined before block {BLOCKS_MINED_THRESHOLD}.',
                   value=_field('blocks_mined_before_threshold')),
    )
    return MetricSchema(
        namespace=namespace,
        up_name='up',
        up_documentation='Whether the last scrape of the node status API succeeded.',
        metrics=metrics,
    )
