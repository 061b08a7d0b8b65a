import unittest

from arbmatch.match.entities import extract_entities
from arbmatch.match.scoring import (
    HybridStrategy,
    KeywordStrategy,
    LexicalStrategy,
    build_chain,
    compare_entities,
    cosine_similarity,
    lexical_score,
    similarity,
)


class LexicalScoreTests(unittest.TestCase):
    def test_identical_titles_score_one(self) -> None:
        self.assertEqual(similarity("Will Bitcoin hit 100k?", "will bitcoin hit 100k"), 1.0)

    def test_containment(self) -> None:
        self.assertEqual(similarity("Bitcoin above 100k", "Will Bitcoin above 100k happen"), 0.85)

    def test_different_years_score_zero(self) -> None:
        result = lexical_score(
            extract_entities("Trump wins the 2024 election"),
            extract_entities("Trump wins the 2028 election"),
        )
        self.assertEqual(result.score, 0.0)
        self.assertTrue(result.conflicts)

    def test_empty_title_scores_zero(self) -> None:
        self.assertEqual(similarity("", "Will Bitcoin hit 100k?"), 0.0)

    def test_identical_punctuation_titles_score_one(self) -> None:
        self.assertEqual(similarity("???", "???"), 1.0)
        self.assertEqual(similarity("???", "!!!"), 0.0)
        self.assertEqual(similarity("  ", "  "), 0.0)

    def test_symmetric(self) -> None:
        a = "Will Kamala Harris win the 2024 presidential election?"
        b = "Kamala Harris to win presidency in 2024"
        self.assertAlmostEqual(similarity(a, b), similarity(b, a), places=12)

    def test_bounded(self) -> None:
        score = similarity("Will the Fed cut rates in March 2025?", "Fed rate cut March 2025")
        self.assertGreater(score, 0.0)
        self.assertLessEqual(score, 1.0)


class HybridStrategyTests(unittest.TestCase):
    def test_prunes_low_embedding_similarity(self) -> None:
        bag = extract_entities("Will Bitcoin hit 100k")
        result = HybridStrategy().score(bag, bag, [1.0, 0.0], [0.0, 1.0])
        self.assertTrue(result.discarded)
        self.assertEqual(result.embedding_similarity, 0.0)

    def test_discards_multiple_conflict_categories(self) -> None:
        result = HybridStrategy().score(
            extract_entities("Will Biden run in 2024"),
            extract_entities("Will Biden not run in 2028"),
            [1.0, 0.0],
            [1.0, 0.0],
        )
        self.assertTrue(result.discarded)
        self.assertGreaterEqual(len(result.conflicts), 2)

    def test_score_combines_embedding_entities_and_words(self) -> None:
        bag = extract_entities("Will Bitcoin hit 100k")
        result = HybridStrategy().score(bag, bag, [1.0, 0.0], [1.0, 0.0])
        # embedding 1.0, entity 0.15 topic + 0.3 words, word overlap 1.0
        self.assertAlmostEqual(result.score, 0.6 + 0.4 * 0.45 + 0.1, places=9)
        self.assertEqual(result.strategy, "hybrid")
        self.assertFalse(result.discarded)

    def test_score_is_clamped(self) -> None:
        bag = extract_entities("Will Bitcoin reach $100k in 2025?")
        result = HybridStrategy().score(bag, bag, [0.6, 0.8], [0.6, 0.8])
        self.assertEqual(result.score, 1.0)

    def test_requires_both_embeddings(self) -> None:
        strategy = HybridStrategy()
        bag = extract_entities("Fed cut")
        self.assertFalse(strategy.supports(bag, bag, None, [1.0]))
        self.assertFalse(strategy.supports(bag, bag, [], [1.0]))
        self.assertTrue(strategy.supports(bag, bag, [1.0], [1.0]))


class KeywordStrategyTests(unittest.TestCase):
    def test_keyword_score_stays_in_unit_interval(self) -> None:
        bag_a = extract_entities("Will the Fed not cut rates in 2024?")
        bag_b = extract_entities("Bitcoin above 100k in 2025")
        result = KeywordStrategy().score(bag_a, bag_b)
        self.assertEqual(result.score, 0.0)
        same = KeywordStrategy().score(bag_a, bag_a)
        self.assertLessEqual(same.score, 1.0)
        self.assertGreater(same.score, 0.5)


class CompareEntitiesTests(unittest.TestCase):
    def test_threshold_conflict(self) -> None:
        comparison = compare_entities(
            extract_entities("Inflation above 3% in 2025"),
            extract_entities("Inflation above 4% in 2025"),
        )
        self.assertIn("threshold", comparison.conflict_categories)
        self.assertTrue(any(m.startswith("year") for m in comparison.matches))


class CosineTests(unittest.TestCase):
    def test_degenerate_vectors(self) -> None:
        self.assertEqual(cosine_similarity(None, [1.0]), 0.0)
        self.assertEqual(cosine_similarity([1.0, 0.0], [1.0]), 0.0)
        self.assertEqual(cosine_similarity([0.0, 0.0], [1.0, 0.0]), 0.0)
        self.assertAlmostEqual(cosine_similarity([3.0, 4.0], [3.0, 4.0]), 1.0)


class ScoringChainTests(unittest.TestCase):
    def test_auto_with_embeddings(self) -> None:
        self.assertEqual(build_chain(True).names, ["hybrid", "lexical", "keyword"])

    def test_auto_without_embeddings(self) -> None:
        self.assertEqual(build_chain(False).names, ["lexical", "keyword"])
        self.assertEqual(build_chain(True, mode="lexical").names, ["lexical", "keyword"])

    def test_keyword_mode(self) -> None:
        self.assertEqual(build_chain(True, mode="keyword").names, ["keyword"])

    def test_unknown_mode(self) -> None:
        with self.assertRaises(ValueError):
            build_chain(False, mode="semantic")

    def test_falls_back_when_embedding_missing(self) -> None:
        chain = build_chain(True)
        bag = extract_entities("Will Bitcoin hit 100k")
        self.assertEqual(chain.score(bag, bag, [1.0], None).strategy, LexicalStrategy.name)
        self.assertEqual(chain.score(bag, bag, [1.0], [1.0]).strategy, HybridStrategy.name)

    def test_lexical_declines_titles_without_text(self) -> None:
        strategy = LexicalStrategy()
        question = extract_entities("???")
        bang = extract_entities("!!!")
        self.assertFalse(strategy.supports(question, bang))
        self.assertTrue(strategy.supports(question, extract_entities("???")))

    def test_keyword_terminates_chain(self) -> None:
        chain = build_chain(False)
        result = chain.score(extract_entities("???"), extract_entities("!!!"))
        self.assertEqual(result.strategy, KeywordStrategy.name)
        self.assertEqual(result.score, 0.0)
        same = chain.score(extract_entities("???"), extract_entities("???"))
        self.assertEqual(same.strategy, LexicalStrategy.name)
        self.assertEqual(same.score, 1.0)


if __name__ == "__main__":
    unittest.main()
