"""
Stage monitoring for the broadcast pipeline.
Tracks per-stage outcomes and success rates, and logs alerts when thresholds are breached.
"""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from .config import MONITORING_DIR

logger = logging.getLogger(__name__)


@dataclass
class FailureRecord:
    """Record of a failed stage"""
    timestamp: datetime
    stage: str
    broadcast_date: str
    error_type: str
    error_message: str


@dataclass
class StageStats:
    """Statistics for a stage"""
    total_attempts: int = 0
    successful: int = 0
    failed: int = 0
    last_failure: Optional[datetime] = None
    consecutive_failures: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 1.0
        return self.successful / self.total_attempts


class StageMonitor:
    """Monitor pipeline health and track stage failures"""

    def __init__(self, data_dir: Path = MONITORING_DIR):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.failures: List[FailureRecord] = []
        self.stage_stats: Dict[str, StageStats] = defaultdict(StageStats)

        self._load_state()

        self.thresholds = {
            'consecutive_failures': 3,
            'success_rate': 0.8,
            'total_failures_24h': 10,
        }

    def record_success(self, stage: str):
        """Record a completed stage"""
        stats = self.stage_stats[stage]
        stats.total_attempts += 1
        stats.successful += 1
        stats.consecutive_failures = 0
        self._save_state()

    def record_failure(self, stage: str, broadcast_date: str, error: Exception):
        """Record a failed stage"""
        now = datetime.now()
        self.failures.append(FailureRecord(
            timestamp=now,
            stage=stage,
            broadcast_date=broadcast_date,
            error_type=type(error).__name__,
            error_message=str(error),
        ))

        stats = self.stage_stats[stage]
        stats.total_attempts += 1
        stats.failed += 1
        stats.consecutive_failures += 1
        stats.last_failure = now

        self._check_alerts(stage)
        self._save_state()

        logger.error(f"FAILURE RECORDED - Stage: {stage}, Broadcast: {broadcast_date}, "
                     f"Error: {type(error).__name__} - {error}")

    def get_recent_failures(self, hours: int = 24) -> List[FailureRecord]:
        cutoff = datetime.now() - timedelta(hours=hours)
        return [f for f in self.failures if f.timestamp > cutoff]

    def get_health_summary(self) -> Dict:
        """Summary of pipeline health over the last 24 hours"""
        recent_failures = self.get_recent_failures(24)
        summary = {
            'overall_health': self._calculate_health_score(),
            'total_failures_24h': len(recent_failures),
            'stage_stats': {},
            'recent_errors': [],
        }

        for stage, stats in self.stage_stats.items():
            if stats.total_attempts > 0:
                summary['stage_stats'][stage] = {
                    'success_rate': f"{stats.success_rate:.1%}",
                    'total_attempts': stats.total_attempts,
                    'consecutive_failures': stats.consecutive_failures,
                    'last_failure': stats.last_failure.isoformat() if stats.last_failure else None,
                }

        for failure in sorted(recent_failures, key=lambda f: f.timestamp, reverse=True)[:5]:
            summary['recent_errors'].append({
                'timestamp': failure.timestamp.isoformat(),
                'stage': failure.stage,
                'broadcast_date': failure.broadcast_date,
                'error': f"{failure.error_type}: {failure.error_message[:100]}",
            })

        return summary

    def _calculate_health_score(self) -> str:
        active = [s for s in self.stage_stats.values() if s.total_attempts > 0]
        if not active:
            return "No Data"

        recent_failure_count = len(self.get_recent_failures(24))
        avg_success_rate = sum(s.success_rate for s in active) / len(active)

        if recent_failure_count < 5 and avg_success_rate > 0.9:
            return "Healthy"
        elif recent_failure_count < 10 and avg_success_rate > 0.7:
            return "Warning"
        return "Critical"

    def _check_alerts(self, stage: str):
        stats = self.stage_stats[stage]
        alerts = []

        if stats.consecutive_failures >= self.thresholds['consecutive_failures']:
            alerts.append(f"Stage '{stage}' has failed {stats.consecutive_failures} times in a row")

        if stats.total_attempts > 10 and stats.success_rate < self.thresholds['success_rate']:
            alerts.append(f"Stage '{stage}' success rate is {stats.success_rate:.1%}")

        recent_failures = len(self.get_recent_failures(24))
        if recent_failures > self.thresholds['total_failures_24h']:
            alerts.append(f"Pipeline has {recent_failures} failures in the last 24 hours")

        for alert in alerts:
            logger.critical(f"🚨 ALERT: {alert}")

    def _save_state(self):
        """Persist monitoring data to disk"""
        try:
            failures_data = [
                {
                    'timestamp': f.timestamp.isoformat(),
                    'stage': f.stage,
                    'broadcast_date': f.broadcast_date,
                    'error_type': f.error_type,
                    'error_message': f.error_message,
                }
                for f in self.failures[-1000:]
            ]
            with open(self.data_dir / 'failures.json', 'w') as f:
                json.dump(failures_data, f, indent=2)

            stats_data = {
                stage: {
                    'total_attempts': stats.total_attempts,
                    'successful': stats.successful,
                    'failed': stats.failed,
                    'last_failure': stats.last_failure.isoformat() if stats.last_failure else None,
                    'consecutive_failures': stats.consecutive_failures,
                }
                for stage, stats in self.stage_stats.items()
            }
            with open(self.data_dir / 'stats.json', 'w') as f:
                json.dump(stats_data, f, indent=2)

        except Exception as e:
            logger.error(f"Failed to save monitoring state: {e}")

    def _load_state(self):
        """Load persisted monitoring data"""
        try:
            failures_file = self.data_dir / 'failures.json'
            if failures_file.exists():
                with open(failures_file, 'r') as f:
                    for item in json.load(f):
                        self.failures.append(FailureRecord(
                            timestamp=datetime.fromisoformat(item['timestamp']),
                            stage=item['stage'],
                            broadcast_date=item.get('broadcast_date', ''),
                            error_type=item['error_type'],
                            error_message=item['error_message'],
                        ))

            stats_file = self.data_dir / 'stats.json'
            if stats_file.exists():
                with open(stats_file, 'r') as f:
                    for stage, data in json.load(f).items():
                        last_failure = data.get('last_failure')
                        self.stage_stats[stage] = StageStats(
                            total_attempts=data.get('total_attempts', 0),
                            successful=data.get('successful', 0),
                            failed=data.get('failed', 0),
                            last_failure=datetime.fromisoformat(last_failure) if last_failure else None,
                            consecutive_failures=data.get('consecutive_failures', 0),
                        )
        except Exception as e:
            logger.error(f"Failed to load monitoring state: {e}")
