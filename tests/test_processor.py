"""Tests for ContentProcessor."""

import pytest

from webscraper.crawler.parser import ParsedPage
from webscraper.crawler.worker import ScrapeOutcome
from webscraper.processing import ContentProcessor
from webscraper.utils.config import ProcessingConfig


def success(url="https://example.com/", content="Some page text", **page_fields):
    page = ParsedPage(url=url, title="Title", content=content, **page_fields)
    return ScrapeOutcome.succeeded(url, page, duration_ms=5, attempts_used=1)


class TestContentProcessor:
    """Tests for ContentProcessor.process."""

    def test_failed_outcomes_are_skipped(self):
        processor = ContentProcessor()
        outcome = ScrapeOutcome.failed("https://example.com/", "Request timeout", attempts_used=3)

        assert processor.process(outcome) is None
        assert processor.get_processed() == []

    def test_empty_content_skipped_by_default(self):
        processor = ContentProcessor()
        assert processor.process(success(content="")) is None

    def test_empty_content_kept_when_configured(self):
        processor = ContentProcessor(ProcessingConfig(remove_empty_content=False))
        assert processor.process(success(content="")) is not None

    def test_truncation(self):
        processor = ContentProcessor(ProcessingConfig(max_content_length=10, sanitize_content=False))

        processed = processor.process(success(content="abcdefghijklmnop"))

        assert processed.content == "abcdefghij"

    def test_sanitize(self):
        processor = ContentProcessor()

        processed = processor.process(success(content="<b>Hello</b>   \n world\x00\x07"))

        assert processed.content == "Hello world"

    def test_filters(self):
        processor = ContentProcessor(ProcessingConfig(filters={'emails': r'\S+@\S+\.com'}))
        processor.add_content_filter('digits', r'\d+')

        processed = processor.process(success(content="Mail me at someone@example.com or call 555 1234"))
        assert processed.content == "Mail me at or call"

        processor.remove_content_filter('digits')
        processed = processor.process(success(url="https://example.com/2", content="Room 101"))
        assert processed.content == "Room 101"

    def test_metadata_added(self):
        processor = ContentProcessor()

        processed = processor.process(success(content="one two three", price="$9.99", discount="10% off"))

        assert processed.payload.metadata['word_count'] == "3"
        assert processed.payload.metadata['price'] == "$9.99"
        assert processed.payload.metadata['discount'] == "10% off"

    def test_original_outcome_untouched(self):
        processor = ContentProcessor(ProcessingConfig(max_content_length=4))
        outcome = success(content="long content here")

        processed = processor.process(outcome)

        assert processed is not outcome
        assert outcome.content == "long content here"
        assert 'word_count' not in outcome.payload.metadata

    def test_listeners(self):
        processor = ContentProcessor()
        seen = []

        def broken_listener(outcome):
            raise RuntimeError("listener failed")

        processor.add_listener(broken_listener)
        processor.add_listener(seen.append)
        processed = processor.process(success())

        assert seen == [processed]

    def test_on_outcome_and_results(self):
        processor = ContentProcessor()
        processor.on_outcome(success("https://a.com/1"))
        processor.on_outcome(success("https://a.com/2", content="x"))
        processor.on_outcome(success("https://b.com/1"))
        processor.on_outcome(ScrapeOutcome.failed("https://b.com/2", "boom"))

        assert len(processor.get_processed()) == 3
        assert processor.get_domain_stats() == {'a.com': 2, 'b.com': 1}

        short = processor.get_filtered(lambda outcome: len(outcome.content) < 5)
        assert [outcome.url for outcome in short] == ["https://a.com/2"]


class TestProcessingConfig:
    """Validation of ProcessingConfig."""

    def test_defaults(self):
        config = ProcessingConfig()
        assert config.max_content_length == 100000
        assert config.remove_empty_content
        assert config.sanitize_content

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            ProcessingConfig(max_content_length=0)
