#!/usr/bin/env python3
"""
PMOS Tenant Network Control Plane - Main Entry Point

Serves the deployment REST API on top of the tenant network reconciler.
On startup it:
- Logs system and database diagnostics
- Initializes Prometheus gauges from the simulated provider's state
- Starts the REST API (blocking)
"""

import logging

import uvicorn

from . import config
from .api.diagnostic_logger import diagnostic_logger
from .api.models import (
    FirewallPolicy as FirewallPolicyModel,
    Instance as InstanceModel,
    Subnet as SubnetModel,
    TenantNetwork as TenantNetworkModel,
)
from .api.rest_api_server import SessionLocal, app
from .metrics import METRICS

logger = logging.getLogger(__name__)


def initialize_metrics(db_factory=SessionLocal):
    """Initialize Prometheus gauges from the database."""
    db = db_factory()
    try:
        logger.info("Initializing metrics from database...")
        METRICS["tenant_networks_total"].set(db.query(TenantNetworkModel).count())
        METRICS["firewall_policies_total"].set(db.query(FirewallPolicyModel).count())
        METRICS["subnets_total"].set(db.query(SubnetModel).count())
        METRICS["instances_total"].set(db.query(InstanceModel).count())
        logger.info("Metrics initialized")
    finally:
        db.close()


def start_rest_api():
    """Start the FastAPI REST API server."""
    logger.info(f"Starting REST API on port {config.REST_PORT}...")
    uvicorn.run(app, host="0.0.0.0", port=config.REST_PORT, log_level=config.LOG_LEVEL.lower())


def main():
    logger.info("=" * 60)
    logger.info("  PMOS Tenant Network Control Plane")
    logger.info(f"  Default provider: {config.DEFAULT_PROVIDER} ({config.DEFAULT_REGION})")
    logger.info("=" * 60)

    diagnostic_logger.log_system_info()
    diagnostic_logger.log_database_status(SessionLocal)
    initialize_metrics()

    start_rest_api()


if __name__ == "__main__":
    main()
