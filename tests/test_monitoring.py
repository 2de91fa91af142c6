import unittest

from hash_archive.crawler.outcome import FetchError, FetchErrorKind, HttpStatus
from hash_archive.utils.monitoring import initialize_monitoring


class TestArchiveMonitor(unittest.TestCase):

    def setUp(self):
        self.monitor = initialize_monitoring()
        self.metrics = self.monitor.metrics

    def test_responses_by_outcome(self):
        self.monitor.record_response(HttpStatus(200), 0.1)
        self.monitor.record_response(HttpStatus(200), 0.2)
        self.monitor.record_response(FetchError(FetchErrorKind.BLOCKED), 0.0)

        self.assertEqual(self.metrics.sample('archive_responses_total', {'outcome': '200'}), 2)
        self.assertEqual(self.metrics.sample('archive_responses_total', {'outcome': 'blocked'}), 1)
        self.assertEqual(self.metrics.sample('archive_fetch_duration_seconds_count'), 3)
        self.assertEqual(self.monitor.get_summary()['responses'], 3)

    def test_decisions(self):
        self.monitor.record_decision(pending=False, outdated=True)
        self.monitor.record_decision(pending=True, outdated=True)
        self.monitor.record_decision(pending=False, outdated=False)

        for state in ('enqueued', 'pending', 'fresh'):
            with self.subTest(state=state):
                self.assertEqual(
                    self.metrics.sample('archive_enqueue_decisions_total', {'state': state}), 1
                )

    def test_gauges(self):
        self.monitor.update_active_workers(4)
        self.monitor.update_free_connections(12)
        self.monitor.record_storage_error()

        self.assertEqual(self.metrics.sample('archive_active_workers'), 4)
        self.assertEqual(self.metrics.sample('archive_free_connections'), 12)
        self.assertEqual(self.metrics.sample('archive_storage_errors_total'), 1)

    def test_registries_are_independent(self):
        other = initialize_monitoring()
        self.monitor.record_storage_error()
        self.assertEqual(other.metrics.sample('archive_storage_errors_total'), 0)

    def test_unrecorded_sample_is_zero(self):
        self.assertEqual(self.metrics.sample('archive_responses_total', {'outcome': '500'}), 0)


if __name__ == '__main__':
    unittest.main()
