"""
Startup Checks - pre-flight validation before the controllers start.

Features:
- Configuration sanity (settings.validate())
- Resource store connectivity
- System information logging

Results are logged; a failed check never stops the process.
"""

import platform
import sys
from datetime import datetime
from typing import Any, Dict, Tuple

import psutil

from sroperator.core.config import OperatorSettings
from sroperator.core.logging_config import get_logger
from sroperator.exceptions import OperatorException

logger = get_logger(__name__)


class StartupChecks:
    """Operator pre-flight checks."""

    def __init__(self, settings: OperatorSettings, store=None):
        self.settings = settings
        self.store = store
        self.checks_passed = 0
        self.checks_failed = 0
        self.warnings = []

    async def run_all_checks(self) -> Tuple[bool, Dict[str, Any]]:
        """
        Run all startup checks.

        Returns:
            Tuple of (all_passed, results_dict)
        """
        logger.info("Starting pre-flight checks")

        results = {
            "timestamp": datetime.utcnow().isoformat(),
            "checks": {},
            "system_info": self._log_system_info(),
            "warnings": [],
        }

        config_check = self._check_configuration()
        results["checks"]["configuration"] = config_check
        self._update_counters(config_check["passed"])

        store_check = await self._check_store()
        results["checks"]["store"] = store_check
        self._update_counters(store_check["passed"])

        results["warnings"] = self.warnings
        results["summary"] = {
            "passed": self.checks_passed,
            "failed": self.checks_failed,
            "warnings": len(self.warnings),
        }

        all_passed = self.checks_failed == 0
        if all_passed:
            logger.info("Pre-flight checks passed", **results["summary"])
        else:
            logger.error("Pre-flight checks failed", **results["summary"])
        return all_passed, results

    def _log_system_info(self) -> Dict[str, Any]:
        info = {
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
            "cpu_count": psutil.cpu_count(),
            "memory_total_gb": round(psutil.virtual_memory().total / (1024**3), 2),
            "hostname": platform.node(),
            "app_version": self.settings.app_version,
            "store_backend": self.settings.store_backend,
            "watch_namespace": self.settings.watch_namespace or "<all>",
        }
        logger.info("System information", **info)
        return info

    def _check_configuration(self) -> Dict[str, Any]:
        problems = self.settings.validate()
        passed = not problems
        for problem in problems:
            logger.error("Configuration problem", problem=problem)
        return {
            "passed": passed,
            "message": "Configuration valid" if passed else f"{len(problems)} problem(s)",
            "problems": problems,
        }

    async def _check_store(self) -> Dict[str, Any]:
        if self.store is None:
            self.warnings.append("Store not initialised")
            return {"passed": False, "message": "Store not initialised"}

        try:
            await self.store.ping()
        except OperatorException as e:
            logger.error("Store check failed", error=e.message)
            return {"passed": False, "message": f"Connection failed: {e.message}", "error": e.message}

        logger.info("Store reachable", backend=self.settings.store_backend)
        return {"passed": True, "message": "Connected successfully"}

    def _update_counters(self, passed: bool):
        if passed:
            self.checks_passed += 1
        else:
            self.checks_failed += 1


async def run_startup_checks(settings: OperatorSettings, store=None) -> Tuple[bool, Dict[str, Any]]:
    """
    Run all startup checks.

    Returns:
        Tuple of (all_passed, results_dict)
    """
    checks = StartupChecks(settings, store)
    return await checks.run_all_checks()
