import os
import unittest

from skyguide.config import Settings


class TestConfig(unittest.TestCase):
    def test_settings_defaults(self):
        previous = os.environ.pop("SKYGUIDE_NARRATIVE_BASE_URL", None)
        try:
            s = Settings()
            self.assertEqual(s.narrative_base_url, "http://localhost:11434")
            self.assertEqual(s.insight_ttl_seconds, 1200)
            self.assertEqual(s.throttle_intervals["forecast"], 900.0)
            self.assertEqual(s.cache_namespace_limits, {"poi": 4})
            self.assertEqual(len(s.overpass_endpoints), 7)
        finally:
            if previous is not None:
                os.environ["SKYGUIDE_NARRATIVE_BASE_URL"] = previous

    def test_settings_env_override_strips_trailing_slash(self):
        previous = os.environ.get("SKYGUIDE_NARRATIVE_BASE_URL")
        try:
            os.environ["SKYGUIDE_NARRATIVE_BASE_URL"] = "http://example.com/"
            s = Settings()
            self.assertEqual(s.narrative_base_url, "http://example.com")
        finally:
            if previous is None:
                os.environ.pop("SKYGUIDE_NARRATIVE_BASE_URL", None)
            else:
                os.environ["SKYGUIDE_NARRATIVE_BASE_URL"] = previous

    def test_backend_choice_is_case_insensitive(self):
        s = Settings(cache_backend=" Memory ", narrative_backend="OpenAI")
        self.assertEqual(s.cache_backend, "memory")
        self.assertEqual(s.narrative_backend, "openai")

    def test_ttl_for_namespaces(self):
        s = Settings(poi_ttl_seconds=10, alerts_ttl_seconds=20, cache_default_ttl_seconds=99)
        self.assertEqual(s.ttl_for("poi"), 10)
        self.assertEqual(s.ttl_for("alerts"), 20)
        self.assertEqual(s.ttl_for("ai_insights"), s.insight_ttl_seconds)
        self.assertEqual(s.ttl_for("locations"), 99)


if __name__ == "__main__":
    unittest.main()
