import logging
import unittest

from utils import logging_utils
from utils.logging_utils import (
    RedactSecretsFilter,
    build_logging_config,
    get_tagged_logger,
    mask_url,
    redact_secrets,
)


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        self.records.append(record)


class TestLoggingUtils(unittest.TestCase):
    def test_build_logging_config_has_expected_handlers_and_filters(self):
        cfg = build_logging_config(job_name="jobtest")
        self.assertIn("stdout", cfg["handlers"])
        self.assertIn("stderr", cfg["handlers"])
        self.assertEqual(cfg["filters"]["job_name"]["job_name"], "jobtest")
        self.assertIn("redact", cfg["handlers"]["stderr"]["filters"])

    def test_get_tagged_logger_injects_tag(self):
        handler = _ListHandler()
        logger = get_tagged_logger("skyguide.pois", tag="custom_tag")
        base_logger = logger.logger
        base_logger.setLevel(logging.DEBUG)
        base_logger.addHandler(handler)
        base_logger.propagate = False
        try:
            logger.info("hello world")
            self.assertEqual(handler.records[-1].tag, "custom_tag")
        finally:
            base_logger.removeHandler(handler)
            base_logger.propagate = True

    def test_default_tag_is_last_name_segment(self):
        logger = get_tagged_logger("skyguide.cache.store")
        self.assertEqual(logger.extra["tag"], "store")

    def test_setup_logging_override_applies_filters(self):
        root = logging.getLogger()
        orig_handlers = root.handlers[:]
        orig_level = root.level
        try:
            logging_utils.setup_logging(level="INFO", job_name="jobtest", override_existing=True)
            self.assertTrue(
                any(
                    any(f.__class__.__name__ == "JobNameFilter" for f in h.filters)
                    for h in root.handlers
                )
            )
        finally:
            root.handlers = orig_handlers
            root.setLevel(orig_level)
            logging_utils._CONFIGURED = False


class TestRedaction(unittest.TestCase):
    def test_masks_secret_query_params(self):
        url = "https://api.openweathermap.org/data/2.5/weather?lat=1&appid=abc"
        self.assertEqual(mask_url(url), "https://api.openweathermap.org/data/2.5/weather?lat=1&appid=%2A%2A%2A")

    def test_masks_password_in_netloc(self):
        self.assertEqual(mask_url("redis://:secret@cache:6379/0"), "redis://:***@cache:6379/0")

    def test_leaves_urls_without_credentials(self):
        url = "sqlite:///./skyguide_cache.db"
        self.assertEqual(mask_url(url), url)

    def test_redact_secrets_in_free_text(self):
        text = "GET https://x/api?api_key=abc123&lat=1 failed; Authorization: Bearer tok.en-1"
        redacted = redact_secrets(text)
        self.assertNotIn("abc123", redacted)
        self.assertNotIn("tok.en-1", redacted)
        self.assertIn("lat=1", redacted)

    def test_filter_rewrites_record_message(self):
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "failed %s", ("https://a/b?appid=zzz",), None)
        self.assertTrue(RedactSecretsFilter().filter(record))
        self.assertNotIn("zzz", record.getMessage())


if __name__ == "__main__":
    unittest.main()
