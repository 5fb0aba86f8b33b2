"""
Discord webhook notifications for backup and cleanup summaries.

Notifications are best-effort: a missing webhook skips them silently and a
failed delivery is logged as a warning. They never fail a run.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import requests


logger = logging.getLogger(__name__)

COLOR_GREEN = 3066993
COLOR_YELLOW = 16776960
COLOR_BLUE = 3447003

REQUEST_TIMEOUT = 10


def _field(name: str, value, inline: bool = True) -> dict:
    return {'name': name, 'value': str(value), 'inline': inline}


class DiscordNotifier:
    """Posts summary embeds to a Discord webhook."""

    def __init__(self, webhook_url: Optional[str]):
        self.webhook_url = webhook_url

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, title: str, description: str, color: int, fields: List[dict]) -> bool:
        """
        Send one embed.

        Returns:
            True if the webhook accepted the message
        """
        if not self.enabled:
            return False

        payload = {
            'embeds': [{
                'title': title,
                'description': description,
                'color': color,
                'timestamp': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
                'fields': fields,
            }]
        }

        try:
            response = requests.post(self.webhook_url, json=payload, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.warning(f"Failed to send Discord notification: {e}")
            return False

        if not 200 <= response.status_code < 300:
            logger.warning(f"Failed to send Discord notification (HTTP {response.status_code})")
            return False
        return True

    def send_backup_summary(self, summary, name_filter: Optional[str] = None) -> bool:
        """Report a RunSummary."""
        if not self.enabled:
            return False

        if summary.attempted == 0:
            status, color = "ℹ️ Skipped", COLOR_BLUE
            description = "No services matched the filter"
        elif summary.status == 'partial':
            status, color = "⚠️ Partial Failure", COLOR_YELLOW
            description = "Some backups completed with errors"
            if summary.upload_failed:
                description += "; one or more uploads failed and were kept locally"
        else:
            status, color = "✅ Success", COLOR_GREEN
            description = "Backup operations completed"

        fields = [
            _field("Services Backed Up", summary.attempted),
            _field("Successful", summary.succeeded),
            _field("Failed", summary.failed),
        ]
        if summary.upload_failed:
            fields.append(_field("Upload Fallbacks", summary.fallback))
        if summary.names:
            fields.append(_field("Services", f"`{', '.join(summary.names)}`", inline=False))
        if name_filter:
            fields.append(_field("Filter", f"`{name_filter}`", inline=False))

        return self.send(f"{status} - Backup Complete", description, color, fields)

    def send_cleanup_summary(self, stats, policy, dry_run: bool) -> bool:
        """Report CleanupStats."""
        if not self.enabled:
            return False

        if dry_run:
            mode = "Dry Run"
            description = "Preview of cleanup operations (no files deleted)"
        else:
            mode = "Executed"
            description = "Backup cleanup operations completed"
            if stats.deleted > 0:
                description = f"Deleted {stats.deleted} backup(s)"

        color = COLOR_GREEN
        if stats.errors or stats.delete_failures:
            color = COLOR_YELLOW

        fields = [
            _field("Mode", mode),
            _field("Total Backups", stats.total),
            _field("Kept", stats.kept),
            _field("Deleted", stats.deleted),
        ]
        if stats.space_freed_mb > 0:
            fields.append(_field("Space Freed", f"{stats.space_freed_mb} MB"))
        if stats.delete_failures:
            fields.append(_field("Delete Failures", stats.delete_failures))
        if stats.failed_targets:
            fields.append(_field("Failed Services", f"`{', '.join(stats.failed_targets)}`", inline=False))
        fields.append(_field(
            "Retention Policy",
            f"Daily: {policy.keep_daily}d, Weekly: {policy.keep_weekly}d, Monthly: {policy.keep_monthly}d",
            inline=False
        ))

        return self.send("🧹 Cleanup Complete", description, color, fields)
