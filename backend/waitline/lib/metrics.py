"""
Prometheus-compatible metrics for observability.

Tracks queue engine indicators:
- Notifications dispatched (by notification_type, channel, status)
- Queue lifecycle events (joins, calls, completions, requeues)
- No-shows and timer activity

Usage:
    from waitline.lib.metrics import get_metrics_collector
    
    metrics = get_metrics_collector()
    metrics.increment_notifications(notification_type="table_ready", channel="webchat")
    metrics.increment_no_shows()
    
    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector for the queue engine.
    
    Counters:
    - queue_notifications_sent_total: Messages handed to the dispatcher
      (labels: notification_type, channel, status)
    - queue_events_total: Queue lifecycle events (labels: event_type)
    - queue_no_shows_total: Entries released by the no-show timer
    - queue_timers_fired_total: Timer callbacks executed (labels: timer)
    - queue_timers_cancelled_total: Timer callbacks cancelled before firing
    
    Thread-safe for concurrent increments.
    """
    
    def __init__(self):
        self._lock = Lock()
        
        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}
    
    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        sorted_labels = tuple(sorted(labels.items()))
        return (metric_name, sorted_labels)
    
    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount
    
    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)
    
    # ===== Notification Metrics =====
    
    def increment_notifications(
        self,
        notification_type: str,
        channel: str,
        status: str = "sent",
        amount: int = 1
    ):
        """
        Increment notifications counter.
        
        Args:
            notification_type: Message purpose (almost_ready, table_ready, ...)
            channel: Delivery channel (webchat, push, whatsapp)
            status: Send status (sent, failed)
            amount: Increment amount (default 1)
        """
        labels = {
            "notification_type": notification_type.lower(),
            "channel": channel.lower(),
            "status": status.lower()
        }
        self._increment("queue_notifications_sent_total", labels, amount)
    
    # ===== Queue Metrics =====
    
    def increment_queue_events(self, event_type: str, amount: int = 1):
        """Increment queue lifecycle event counter."""
        labels = {"event_type": event_type.lower()}
        self._increment("queue_events_total", labels, amount)
    
    def increment_no_shows(self, amount: int = 1):
        """Increment no-show counter."""
        self._increment("queue_no_shows_total", {}, amount)
    
    # ===== Timer Metrics =====
    
    def increment_timers_fired(self, timer: str, amount: int = 1):
        """Increment fired timer counter (labels: timer kind)."""
        self._increment("queue_timers_fired_total", {"timer": timer.lower()}, amount)
    
    def increment_timers_cancelled(self, amount: int = 1):
        """Increment cancelled timer counter."""
        self._increment("queue_timers_cancelled_total", {}, amount)
    
    # ===== Export =====
    
    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.
        
        Returns:
            Prometheus-compatible text output
        """
        output_lines = []
        
        # Group counters by metric name
        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                if metric_name not in metrics_by_name:
                    metrics_by_name[metric_name] = []
                metrics_by_name[metric_name].append((dict(labels_tuple), value))
        
        # Generate Prometheus format for each metric
        for metric_name in sorted(metrics_by_name.keys()):
            # Add HELP and TYPE comments
            help_text = self._get_help_text(metric_name)
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")
            
            # Add metric lines
            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")
            
            output_lines.append("")  # Blank line between metrics
        
        return "\n".join(output_lines)
    
    def _get_help_text(self, metric_name: str) -> str:
        """Get help text for metric."""
        help_texts = {
            "queue_notifications_sent_total": "Total number of queue notifications handed to the dispatcher",
            "queue_events_total": "Total number of queue lifecycle events",
            "queue_no_shows_total": "Total number of entries released as no-show",
            "queue_timers_fired_total": "Total number of notification timers fired",
            "queue_timers_cancelled_total": "Total number of notification timers cancelled",
        }
        return help_texts.get(metric_name, "Counter metric")
    
    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """
        Get current value of a specific counter.
        
        Args:
            metric_name: Name of the metric
            labels: Label filters
        
        Returns:
            Current counter value
        """
        return self._get_value(metric_name, labels)
    
    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.
    
    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    global _metrics_collector
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
