#!/usr/bin/env python3
"""
Diagnostic Logger for the PMOS Tenant Network Control Plane

Keeps a running record of reconciliation failures and warnings, with the
deployment context that produced them, and can dump it as a JSON report.
"""

import json
import logging
import os
import platform
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, inspect, select, table

from .. import config

# Configure diagnostic logging
handlers = [logging.StreamHandler(sys.stdout)]

# Only add a file handler when a log directory is configured
if config.LOG_DIR:
    os.makedirs(config.LOG_DIR, exist_ok=True)
    handlers.append(logging.FileHandler(os.path.join(config.LOG_DIR, "diagnostic.log")))

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=handlers
)

logger = logging.getLogger("diagnostic")


class DiagnosticLogger:
    """Centralized diagnostic logging for the control plane."""

    def __init__(self):
        self.start_time = datetime.now()
        self.errors = []
        self.warnings = []

    def log_system_info(self):
        """Log system information for debugging."""
        logger.info("=" * 60)
        logger.info("SYSTEM DIAGNOSTICS")
        logger.info("=" * 60)
        logger.info(f"Platform: {platform.platform()}")
        logger.info(f"Python Version: {sys.version}")
        logger.info(f"Working Directory: {os.getcwd()}")
        logger.info(f"Environment Variables: {[k for k in os.environ.keys() if k.startswith('PMOS_')]}")
        logger.info(f"Default Provider: {config.DEFAULT_PROVIDER} ({config.DEFAULT_REGION})")
        logger.info("=" * 60)

    def log_database_status(self, db_factory):
        """Log row counts for every table behind the simulated provider."""
        db = db_factory()
        try:
            logger.info("DATABASE DIAGNOSTICS")
            logger.info("-" * 30)
            tables = inspect(db.get_bind()).get_table_names()
            logger.info(f"Tables: {tables}")
            counts = {}
            for name in tables:
                count = db.execute(select(func.count()).select_from(table(name))).scalar()
                counts[name] = count
                logger.info(f"Table {name}: {count} records")
            return counts
        except Exception as e:
            logger.error(f"Database diagnostic failed: {e}")
            logger.error(traceback.format_exc())
            return {}
        finally:
            db.close()

    def log_error(self, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log an error with context."""
        self.errors.append({
            'timestamp': datetime.now().isoformat(),
            'error': error_msg,
            'context': context or {}
        })
        logger.error(f"ERROR: {error_msg}")
        if context:
            logger.error(f"Context: {json.dumps(context, indent=2, default=str)}")

    def log_warning(self, warning_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log a warning with context."""
        self.warnings.append({
            'timestamp': datetime.now().isoformat(),
            'warning': warning_msg,
            'context': context or {}
        })
        logger.warning(f"WARNING: {warning_msg}")
        if context:
            logger.warning(f"Context: {json.dumps(context, indent=2, default=str)}")

    def log_success(self, success_msg: str):
        """Log a success message."""
        logger.info(f"SUCCESS: {success_msg}")

    def generate_report(self, report_path: Optional[str] = None):
        """Generate a diagnostic report, optionally saving it as JSON."""
        report = {
            'start_time': self.start_time.isoformat(),
            'end_time': datetime.now().isoformat(),
            'errors': self.errors,
            'warnings': self.warnings,
            'total_errors': len(self.errors),
            'total_warnings': len(self.warnings)
        }

        if report_path:
            with open(report_path, 'w') as f:
                json.dump(report, f, indent=2, default=str)

        logger.info("=" * 60)
        logger.info("DIAGNOSTIC REPORT SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Total Errors: {len(self.errors)}")
        logger.info(f"Total Warnings: {len(self.warnings)}")
        if report_path:
            logger.info(f"Report saved to: {report_path}")
        logger.info("=" * 60)

        return report


# Global diagnostic logger instance
diagnostic_logger = DiagnosticLogger()


def run_full_diagnostic(db_factory, report_path: Optional[str] = None):
    """Run a complete diagnostic check."""
    logger.info("Starting full diagnostic check...")

    diagnostic_logger.log_system_info()
    diagnostic_logger.log_database_status(db_factory)

    return diagnostic_logger.generate_report(report_path)
