#!/usr/bin/env python3
"""
Aleo node collector

Custom prometheus_client collector. Every scrape performs one fresh fetch
and yields a complete, self-contained set of gauges, or only ``aleo_up 0``
when the node could not be read.
"""

import logging
import time
from typing import Iterator, List

from prometheus_client.core import GaugeMetricFamily, Metric

from .errors import FetchError
from .schema import CHANNEL_LABEL, MetricSchema, MetricSpec
from .state import ScrapeResult


class AleoCollector:
    """
    Translate the remote node state into gauges on demand.

    Holds no mutable state beyond the fetcher's connection pool, so
    concurrent scrapes are independent.
    """

    def __init__(self, fetcher, schema: MetricSchema):
        """
        Args:
            fetcher: Object with a ``fetch()`` method returning NodeStates
            schema: Metric table built at startup
        """
        self.fetcher = fetcher
        self.schema = schema
        self.logger = logging.getLogger(__name__)

    def scrape(self) -> ScrapeResult:
        """Fetch once; fetch errors become a down result"""
        start_time = time.time()
        try:
            states = self.fetcher.fetch()
        except FetchError as e:
            self.logger.warning(f"Scrape failed ({type(e).__name__}): {e}")
            return ScrapeResult.down(e)

        elapsed = time.time() - start_time
        self.logger.debug(f"Scraped {len(states)} node state(s) in {elapsed:.3f}s")
        return ScrapeResult.up(states)

    def _up_family(self, value: float) -> GaugeMetricFamily:
        return GaugeMetricFamily(self.schema.up_fqname, self.schema.up_documentation, value=value)

    def _clamp(self, spec: MetricSpec, value: float, channel) -> float:
        if value < 0:
            self.logger.warning(
                f"Clamping negative value {value} for {self.schema.fqname(spec)}"
                + (f" (channel {channel})" if channel is not None else "")
            )
            return 0.0
        return value

    def _family(self, spec: MetricSpec, result: ScrapeResult) -> GaugeMetricFamily:
        labelnames: List[str] = list(spec.labelnames)
        if result.channelized:
            labelnames.append(CHANNEL_LABEL)

        family = GaugeMetricFamily(self.schema.fqname(spec), spec.documentation, labels=labelnames)
        for state in result.states:
            label_values = list(spec.label_values(state))
            if result.channelized:
                label_values.append(state.channel)
            value = self._clamp(spec, spec.sample_value(state), state.channel)
            family.add_metric(label_values, value)
        return family

    def collect(self) -> Iterator[Metric]:
        """Yield ``up`` first, then one family per schema entry"""
        result = self.scrape()
        if not result.is_up:
            yield self._up_family(0)
            return

        # Build the whole snapshot before emitting anything
        families = [self._family(spec, result) for spec in self.schema.metrics]
        yield self._up_family(1)
        yield from families

    def describe(self) -> Iterator[Metric]:
        """Describe families without fetching so registration stays offline"""
        yield GaugeMetricFamily(self.schema.up_fqname, self.schema.up_documentation)
        for spec in self.schema.metrics:
            yield GaugeMetricFamily(self.schema.fqname(spec), spec.documentation)
