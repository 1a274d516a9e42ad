"""
Unit tests for post-deploy topic discovery and tuning.
"""

from unittest.mock import MagicMock

from pipelines.orchestration.topic_discovery import (
    TopicDiscoveryResult,
    discover_topics_for_sink,
    retarget_sink,
    topic_prefix_for,
    tune_topics,
    wait_for_topics,
)


class TestWaitForTopics:
    """Test polling with exponential backoff."""

    def test_backoff_until_topics_appear(self):
        topic_manager = MagicMock()
        topic_manager.find_topics_for_prefix.side_effect = [[], [], ['orders.public.items']]
        sleeps = []

        result = wait_for_topics(
            topic_manager, 'orders', max_attempts=5, initial_delay=1.0, backoff_factor=2.0, sleep=sleeps.append
        )

        assert result.found
        assert result.topics == ['orders.public.items']
        assert result.attempts == 3
        assert sleeps == [1.0, 2.0, 4.0]

    def test_gives_up_after_max_attempts(self):
        topic_manager = MagicMock()
        topic_manager.find_topics_for_prefix.return_value = []

        result = wait_for_topics(topic_manager, 'orders', max_attempts=3, initial_delay=0.5, sleep=lambda s: None)

        assert not result.found
        assert result.attempts == 3
        assert result.error is None

    def test_listing_errors_are_retried(self):
        topic_manager = MagicMock()
        topic_manager.find_topics_for_prefix.side_effect = [Exception('broker down'), ['orders.public.items']]

        result = wait_for_topics(topic_manager, 'orders', max_attempts=3, initial_delay=0, sleep=lambda s: None)

        assert result.topics == ['orders.public.items']
        assert result.error is None

    def test_last_listing_error_is_kept(self):
        topic_manager = MagicMock()
        topic_manager.find_topics_for_prefix.side_effect = Exception('broker down')

        result = wait_for_topics(topic_manager, 'orders', max_attempts=2, initial_delay=0, sleep=lambda s: None)

        assert not result.found
        assert 'broker down' in result.error


class TestSinkRetargeting:
    """Test switching the sink from a regex to explicit topics."""

    def test_prefix_prefers_topic_prefix(self):
        assert topic_prefix_for({'topic.prefix': 'a', 'database.server.name': 'b'}, 'p') == 'a'
        assert topic_prefix_for({'database.server.name': 'b'}, 'p') == 'b'
        assert topic_prefix_for({}, 'p') == 'p'

    def test_retarget_replaces_regex(self):
        sink = {'topics.regex': 'orders\\..*', 'name': 'orders-sink'}

        retargeted = retarget_sink(sink, ['orders.public.a', 'orders.public.b'])

        assert retargeted == {'topics': 'orders.public.a,orders.public.b', 'name': 'orders-sink'}
        assert 'topics.regex' in sink

    def test_no_topics_keeps_regex(self):
        sink = {'topics.regex': 'orders\\..*'}

        assert retarget_sink(sink, []) == sink

    def test_discover_topics_for_sink(self):
        topic_manager = MagicMock()
        topic_manager.find_topics_for_prefix.return_value = ['orders_r1.public.items']

        sink, result = discover_topics_for_sink(
            topic_manager,
            {'topic.prefix': 'orders_r1'},
            {'topics.regex': 'orders\\..*'},
            'orders',
            sleep=lambda s: None,
        )

        topic_manager.find_topics_for_prefix.assert_called_with('orders_r1')
        assert sink == {'topics': 'orders_r1.public.items'}
        assert result.prefix == 'orders_r1'


class TestTuneTopics:
    """Test compaction of discovered topics."""

    def test_tuning_errors_are_recorded(self):
        topic_manager = MagicMock()
        topic_manager.set_compaction.return_value = {'a': None, 'b': 'denied'}
        result = TopicDiscoveryResult(prefix='orders', topics=['a', 'b'])

        tune_topics(topic_manager, result)

        assert result.tuning_errors == {'b': 'denied'}

    def test_tuning_failure_never_raises(self):
        topic_manager = MagicMock()
        topic_manager.set_compaction.side_effect = Exception('broker down')
        result = TopicDiscoveryResult(prefix='orders', topics=['a'])

        tune_topics(topic_manager, result)

        assert result.tuning_errors == {'a': 'broker down'}

    def test_nothing_discovered_nothing_tuned(self):
        topic_manager = MagicMock()

        tune_topics(topic_manager, TopicDiscoveryResult(prefix='orders'))

        topic_manager.set_compaction.assert_not_called()
