import asyncio
import time
import unittest
from unittest import mock

import requests
from helpers import TERM, build_store, record_scores, seed_two_students, subject_scores

from termreport.config.settings import Settings
from termreport.core.aggregation import AggregationRule
from termreport.core.errors import NotFoundError, RankingTimeout, RankingUnavailable, ValidationError
from termreport.core.models import RankEntry, RankScope
from termreport.services.ranking_service import LocalRankingSource, RankingService, RemoteRankingSource

YEAR, TERM_NAME = TERM.year, TERM.name


class LocalRankingTests(unittest.TestCase):
    def setUp(self):
        self.store = build_store()
        seed_two_students(self.store)
        self.service = RankingService(LocalRankingSource(self.store, AggregationRule()))

    def tearDown(self):
        self.store.close()

    def test_class_ranking(self):
        entries = self.service.rank_class("b1", YEAR, TERM_NAME)
        self.assertEqual(
            entries,
            [
                RankEntry("A", "Ama Mensah", "Basic 1", 80.0, 1),
                RankEntry("B", "Kofi Boateng", "Basic 1", 70.0, 2),
            ],
        )

    def test_unscored_subjects_do_not_lower_average(self):
        self.store.add_student("C", "Esi", "Owusu", "b1")
        record_scores(self.store, subject_scores("C", "math", 80))
        entries = {e.student_id: e for e in self.service.rank_class("b1", YEAR, TERM_NAME)}
        self.assertEqual(entries["C"].average_score, 80.0)
        self.assertEqual(entries["C"].rank, 1)
        self.assertEqual(entries["A"].rank, 1)

    def test_student_without_scores_is_not_ranked(self):
        self.store.add_student("D", "Yaw", "Asante", "b1")
        ids = [e.student_id for e in self.service.rank_class("b1", YEAR, TERM_NAME)]
        self.assertNotIn("D", ids)

    def test_level_and_school_scopes(self):
        self.store.add_student("E", "Efua", "Addo", "b2")
        self.store.add_student("F", "Kwame", "Darko", "jhs1")
        record_scores(
            self.store,
            subject_scores("E", "math", 85, class_id="b2") + subject_scores("F", "eng", 95, class_id="jhs1"),
        )

        level = self.service.rank_level("Lower Primary", YEAR, TERM_NAME)
        self.assertEqual([(e.student_id, e.rank) for e in level], [("E", 1), ("A", 2), ("B", 3)])
        self.assertEqual(level[0].class_name, "Basic 2")

        school = self.service.rank_school(YEAR, TERM_NAME)
        self.assertEqual([e.student_id for e in school], ["F", "E", "A", "B"])

    def test_ranking_is_deterministic(self):
        first = self.service.rank(RankScope.SCHOOL, None, YEAR, TERM_NAME)
        self.assertEqual(first, self.service.rank("school", None, YEAR, TERM_NAME))

    def test_scope_errors(self):
        with self.assertRaises(ValidationError):
            self.service.rank("district", None, YEAR, TERM_NAME)
        with self.assertRaises(ValidationError):
            self.service.rank(RankScope.LEVEL, None, YEAR, TERM_NAME)
        with self.assertRaises(NotFoundError):
            self.service.rank_class("b9", YEAR, TERM_NAME)

    def test_other_term_is_empty(self):
        self.assertEqual(self.service.rank_class("b1", YEAR, "Third Term"), [])


class SlowSource:
    def rank(self, scope, scope_id, term):
        time.sleep(0.3)
        return []


class RemoteRankingTests(unittest.TestCase):
    def setUp(self):
        self.source = RemoteRankingSource("http://ranking.local/", timeout=2)
        self.service = RankingService(self.source)

    @mock.patch("termreport.services.ranking_service.requests.get")
    def test_parses_entries(self, get):
        get.return_value = mock.Mock(status_code=200)
        get.return_value.json.return_value = [
            {"student_id": "A", "name": "Ama Mensah", "class_name": "Basic 1", "average_score": 80.0, "rank": 1}
        ]
        entries = self.service.rank_level("JHS", YEAR, TERM_NAME)
        self.assertEqual(entries, [RankEntry("A", "Ama Mensah", "Basic 1", 80.0, 1)])
        get.assert_called_once_with(
            "http://ranking.local/rankings/level",
            params={"year": YEAR, "term": TERM_NAME, "scope_id": "JHS"},
            timeout=2,
        )

    @mock.patch("termreport.services.ranking_service.requests.get", side_effect=requests.Timeout())
    def test_timeout(self, _get):
        with self.assertRaises(RankingTimeout):
            self.service.rank_school(YEAR, TERM_NAME)

    @mock.patch("termreport.services.ranking_service.requests.get", side_effect=requests.ConnectionError())
    def test_unreachable(self, _get):
        with self.assertRaises(RankingUnavailable) as ctx:
            self.service.rank_school(YEAR, TERM_NAME)
        self.assertNotIsInstance(ctx.exception, RankingTimeout)

    @mock.patch("termreport.services.ranking_service.requests.get")
    def test_bad_responses(self, get):
        get.return_value = mock.Mock(status_code=502)
        with self.assertRaises(RankingUnavailable):
            self.service.rank_school(YEAR, TERM_NAME)

        get.return_value = mock.Mock(status_code=200)
        get.return_value.json.return_value = {"error": "nope"}
        with self.assertRaises(RankingUnavailable):
            self.service.rank_school(YEAR, TERM_NAME)

    @mock.patch("termreport.services.ranking_service.requests.get")
    def test_rejects_inconsistent_rankings(self, get):
        get.return_value = mock.Mock(status_code=200)
        payloads = [
            [{"student_id": "A", "average_score": 250.0, "rank": 1}],
            [{"student_id": "A", "average_score": 80.0, "rank": 0}],
            [{"student_id": "A", "average_score": 80.0, "rank": 2}],
            [
                {"student_id": "A", "average_score": 80.0, "rank": 1},
                {"student_id": "B", "average_score": 90.0, "rank": 3},
                {"student_id": "C", "average_score": 85.0, "rank": 2},
            ],
        ]
        for payload in payloads:
            get.return_value.json.return_value = payload
            with self.assertRaises(RankingUnavailable):
                self.service.rank_school(YEAR, TERM_NAME)

    @mock.patch("termreport.services.ranking_service.requests.get")
    def test_accepts_shared_ranks(self, get):
        get.return_value = mock.Mock(status_code=200)
        get.return_value.json.return_value = [
            {"student_id": "A", "average_score": 80.0, "rank": 1},
            {"student_id": "C", "average_score": 80.0, "rank": 1},
            {"student_id": "B", "average_score": 70.0, "rank": 3},
        ]
        self.assertEqual([e.rank for e in self.service.rank_school(YEAR, TERM_NAME)], [1, 1, 3])

    def test_missing_endpoint(self):
        with self.assertRaises(RankingUnavailable):
            RemoteRankingSource("")

    def test_async_timeout(self):
        service = RankingService(SlowSource())
        with self.assertRaises(RankingTimeout):
            asyncio.run(service.rank_async("school", None, YEAR, TERM_NAME, timeout=0.05))


class RankingFromSettingsTests(unittest.TestCase):
    def setUp(self):
        self.store = build_store()

    def tearDown(self):
        self.store.close()

    def test_remote_source_when_url_is_set(self):
        configured = Settings(ranking_service_url="http://ranking.local", ranking_timeout_seconds=4.0)
        with mock.patch("termreport.config.settings.settings", configured):
            service = RankingService.from_settings(self.store)
        self.assertIsInstance(service.source, RemoteRankingSource)
        self.assertEqual(service.source.endpoint, "http://ranking.local")
        self.assertEqual(service.source.timeout, 4.0)

    def test_local_source_by_default(self):
        with mock.patch("termreport.config.settings.settings", Settings(ranking_service_url="")):
            service = RankingService.from_settings(self.store)
        self.assertIsInstance(service.source, LocalRankingSource)


if __name__ == "__main__":
    unittest.main()
