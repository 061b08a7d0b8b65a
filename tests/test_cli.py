import io
import json
import os
import tempfile
import unittest
from unittest.mock import patch

import yaml

from arbmatch.cli import EXIT_INDEX_BUSY, main
from arbmatch.config import Config
from arbmatch.http_client import VenueFetchError
from arbmatch.models import MarketRecord, MatchDetails, MatchedPair
from arbmatch.pipeline import ScanResult
from arbmatch.pricing.arb import rank_opportunities
from arbmatch.storage import IndexGuard


def _scan_result() -> ScanResult:
    pair = MatchedPair(
        market_a=MarketRecord("kalshi", "K1", "Will Bitcoin reach $100k in 2025?", yes_price=0.79),
        market_b=MarketRecord("polymarket", "P1", "Bitcoin to reach $100k in 2025", yes_price=0.75),
        similarity=0.75,
        confidence="high",
        details=MatchDetails(strategy="lexical"),
    )
    return ScanResult(
        pairs=[pair],
        opportunities=rank_opportunities([pair]),
        strategies=["lexical"],
        venue_counts={"kalshi": 1, "polymarket": 1},
    )


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.config = Config(db_path=os.path.join(self._tmpdir.name, "cli.db"))
        patcher = patch("arbmatch.cli.load_config", return_value=self.config)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_arb_prints_opportunity(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            code = main(["arb", "--kalshi-yes", "0.79", "--polymarket-yes", "0.75"])
        self.assertEqual(code, 0)
        payload = json.loads(stdout.getvalue())
        self.assertEqual(payload["side1"]["outcome"], "no")
        self.assertEqual(payload["profit_tier"], "green")

    def test_arb_without_opportunity(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            code = main(["arb", "--kalshi-yes", "0.55", "--polymarket-yes", "0.55"])
        self.assertEqual(code, 0)
        self.assertIn("No profitable arbitrage", stdout.getvalue())

    def test_arb_rejects_bad_price(self) -> None:
        self.assertEqual(main(["arb", "--kalshi-yes", "1.5", "--polymarket-yes", "0.2"]), 1)

    def test_matches_while_indexing(self) -> None:
        with IndexGuard(self.config.db_path).indexing():
            self.assertEqual(main(["matches"]), EXIT_INDEX_BUSY)

    def test_stats(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            self.assertEqual(main(["stats"]), 0)
        self.assertEqual(json.loads(stdout.getvalue())["total_items"], 0)

    @patch("arbmatch.cli.scan")
    def test_scan_writes_yaml(self, mock_scan) -> None:
        mock_scan.return_value = _scan_result()
        out_path = os.path.join(self._tmpdir.name, "scan.yml")
        self.assertEqual(main(["scan", "--mode", "lexical", "--out", out_path]), 0)
        with open(out_path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
        self.assertEqual(payload["opportunity_count"], 1)
        self.assertEqual(payload["matches"][0]["market_a"]["market_id"], "K1")
        self.assertIsNone(mock_scan.call_args.kwargs["embedder"])

    @patch("arbmatch.cli.scan", side_effect=VenueFetchError("down"))
    def test_scan_fetch_failure(self, _mock_scan) -> None:
        self.assertEqual(main(["scan", "--mode", "lexical"]), 1)


if __name__ == "__main__":
    unittest.main()
