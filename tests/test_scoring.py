"""
Consistency scorer tests.

Critical invariant tested:
    THE SCORE IS ALWAYS WITHIN [0, 1] AND IS A PURE FUNCTION OF THE SNAPSHOT
"""

import random
import unittest

from secure_context.scoring import ConsistencyScorer, score

from fakes import BASE_MS, make_snapshot


def spread(ms):
    return (BASE_MS, BASE_MS + ms // 2, BASE_MS + ms // 3, BASE_MS + ms)


class TestSubScores(unittest.TestCase):

    def test_precise_and_fresh_snapshot_scores_one(self):
        result = score(make_snapshot(accuracy=10, timestamps=spread(2000)))

        self.assertEqual(result.value, 1.0)
        self.assertEqual(result.sub_scores.location, 1.0)
        self.assertEqual(result.sub_scores.temporal, 1.0)

    def test_imprecise_and_stale_snapshot_scores_three_quarters(self):
        result = score(make_snapshot(accuracy=50, timestamps=spread(8000)))

        self.assertEqual(result.sub_scores.location, 0.5)
        self.assertEqual(result.sub_scores.temporal, 0.5)
        self.assertEqual(result.value, 0.75)

    def test_location_accuracy_boundary(self):
        self.assertEqual(score(make_snapshot(accuracy=20)).sub_scores.location, 1.0)
        self.assertEqual(score(make_snapshot(accuracy=20.01)).sub_scores.location, 0.5)

    def test_temporal_window_boundary(self):
        self.assertEqual(score(make_snapshot(timestamps=spread(4999))).sub_scores.temporal, 1.0)
        self.assertEqual(score(make_snapshot(timestamps=spread(5000))).sub_scores.temporal, 0.5)

    def test_collection_time_does_not_affect_temporal_score(self):
        snapshot = make_snapshot(timestamps=spread(100), collected_at=BASE_MS + 60_000)
        self.assertEqual(score(snapshot).sub_scores.temporal, 1.0)

    def test_sub_score_names(self):
        names = set(score(make_snapshot()).to_dict())
        self.assertEqual(names, {
            "consistency_score",
            "location_consistency",
            "temporal_consistency",
            "motion_consistency",
            "network_consistency",
        })


class TestEvaluators(unittest.TestCase):

    def test_rejecting_evaluators_drive_score_below_threshold(self):
        scorer = ConsistencyScorer(motion_evaluator=lambda r: 0.0, network_evaluator=lambda r: 0.0)
        result = scorer.score(make_snapshot(accuracy=50, timestamps=spread(8000)))

        self.assertEqual(result.value, 0.25)
        self.assertFalse(result.meets(0.7))

    def test_threshold_is_inclusive(self):
        scorer = ConsistencyScorer(motion_evaluator=lambda r: 0.9, network_evaluator=lambda r: 0.4)
        result = scorer.score(make_snapshot(accuracy=10, timestamps=spread(8000)))

        self.assertEqual(result.value, 0.7)
        self.assertTrue(result.meets(0.7))

    def test_just_below_threshold_fails(self):
        scorer = ConsistencyScorer(motion_evaluator=lambda r: 0.9, network_evaluator=lambda r: 0.396)
        result = scorer.score(make_snapshot(accuracy=10, timestamps=spread(8000)))

        self.assertEqual(result.value, 0.699)
        self.assertFalse(result.meets(0.7))

    def test_evaluators_receive_their_reading(self):
        seen = []
        scorer = ConsistencyScorer(
            motion_evaluator=lambda r: seen.append(r.kind.value) or 1.0,
            network_evaluator=lambda r: seen.append(r.kind.value) or 1.0,
        )
        scorer.score(make_snapshot())
        self.assertEqual(seen, ["motion_signature", "network_fingerprint"])

    def test_out_of_range_evaluators_are_clamped(self):
        scorer = ConsistencyScorer(motion_evaluator=lambda r: 3.0, network_evaluator=lambda r: -1.0)
        result = scorer.score(make_snapshot())

        self.assertEqual(result.sub_scores.motion, 1.0)
        self.assertEqual(result.sub_scores.network, 0.0)
        self.assertEqual(result.value, 0.75)

    def test_nan_evaluator_scores_zero(self):
        scorer = ConsistencyScorer(motion_evaluator=lambda r: float("nan"))
        self.assertEqual(scorer.score(make_snapshot()).sub_scores.motion, 0.0)


class TestScoreBounds(unittest.TestCase):

    def test_score_is_bounded_for_arbitrary_snapshots(self):
        rng = random.Random(7)
        for _ in range(200):
            timestamps = tuple(BASE_MS + rng.randint(0, 20_000) for _ in range(4))
            scorer = ConsistencyScorer(
                motion_evaluator=lambda r, v=rng.uniform(-2, 3): v,
                network_evaluator=lambda r, v=rng.uniform(-2, 3): v,
            )
            result = scorer.score(make_snapshot(accuracy=rng.uniform(0, 100), timestamps=timestamps))
            self.assertGreaterEqual(result.value, 0.0)
            self.assertLessEqual(result.value, 1.0)

    def test_scoring_is_deterministic(self):
        snapshot = make_snapshot(accuracy=35, timestamps=spread(6000))
        self.assertEqual(score(snapshot), score(snapshot))


if __name__ == "__main__":
    unittest.main()
