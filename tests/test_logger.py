"""
Tests for the run logger.

Run with: pytest tests/test_logger.py -v
"""
import logging


class TestAssessmentLogger:

    def test_level_from_config_name(self):
        from exam_tutor.utils import LogLevel

        assert LogLevel.from_name("VERBOSE") is LogLevel.VERBOSE
        assert LogLevel.from_name("nonsense") is LogLevel.STANDARD
        assert LogLevel.from_name(None) is LogLevel.STANDARD

    def test_minimal_hides_phases_but_not_errors(self, caplog):
        from exam_tutor.utils import create_logger, LogLevel

        log = create_logger("Grading", LogLevel.MINIMAL)
        with caplog.at_level(logging.DEBUG):
            log.phase("Grading session s1")
            log.stage_result(0, "chat", None, "timeout")
            log.error("Could not save summary", RuntimeError("db locked"))

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["[Grading] ❌ Could not save summary: db locked"]

    def test_verbose_records_metrics_and_timings(self, caplog):
        from exam_tutor.utils import create_logger

        log = create_logger("Indexer", verbose=True)
        with caplog.at_level(logging.DEBUG):
            log.metric("l1.pdf.chunks", 4)
            with log.timer("index l1.pdf"):
                pass

        assert log.metrics == {"l1.pdf.chunks": 4}
        assert "index l1.pdf" in log.timings_ms
        assert any("📊 l1.pdf.chunks: 4" in r.getMessage() for r in caplog.records)

    def test_low_confidence_retrieval_warns(self, caplog):
        from exam_tutor.utils import create_logger, LogLevel

        log = create_logger("Retrieval", LogLevel.STANDARD)
        with caplog.at_level(logging.INFO):
            log.retrieval_stats("vector", 2, 0.12, low_confidence=True)

        assert caplog.records[-1].levelno == logging.WARNING
        assert "top sim 0.12" in caplog.records[-1].getMessage()
