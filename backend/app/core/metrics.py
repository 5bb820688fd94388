############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# metrics.py: Prometheus metric definitions
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Prometheus metrics shared across the service."""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "chatbridge_requests_total",
    "Total number of chat requests",
    ["endpoint", "status"],
)
IMAGE_FETCH_COUNT = Counter(
    "chatbridge_image_fetch_total",
    "Remote image fetches by outcome",
    ["outcome"],  # ok, rejected, http_error, network_error, too_large
)
IMAGE_FETCH_LATENCY = Histogram(
    "chatbridge_image_fetch_seconds",
    "Remote image fetch latency in seconds",
)
UPSTREAM_LATENCY = Histogram(
    "chatbridge_upstream_stream_seconds",
    "Time spent relaying an upstream stream",
)
