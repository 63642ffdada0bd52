import random
import unittest

from aavetrace.adapters.chain.static_chain_adapter import StaticChainAdapter
from aavetrace.core.dto import ZERO_ADDRESS, Token
from aavetrace.core.errors import ConfigError, InconsistentLedgerWarning
from aavetrace.services.balance_ledger import BalanceLedger, HolderService, aggregate_by_recipient
from aavetrace.services.log_scanner import ChunkedLogScanner

from helpers import TOKEN, addr, burn, mint, transfer

A, B, C = addr("a"), addr("b"), addr("c")


class BalanceLedgerTests(unittest.TestCase):
    def test_mint_then_transfers(self) -> None:
        events = [mint(A, 100, 1), transfer(A, B, 40, 2), transfer(B, C, 10, 3)]

        bm = BalanceLedger().fold(events)

        self.assertEqual(bm.holders(), {A: 60, B: 30, C: 10})
        self.assertEqual(bm.warnings, [])

    def test_zero_address_is_never_a_holder(self) -> None:
        bm = BalanceLedger().fold([mint(A, 100, 1), burn(A, 30, 2)])

        self.assertNotIn(ZERO_ADDRESS, bm.balances)
        self.assertEqual(bm.holders(), {A: 70})

    def test_zero_balances_hidden_from_holders(self) -> None:
        bm = BalanceLedger().fold([mint(A, 5, 1), transfer(A, B, 5, 2)])

        self.assertEqual(bm.holders(), {B: 5})
        self.assertEqual(len(bm), 1)

    def test_underflow_is_clamped_and_reported(self) -> None:
        # A never received anything in the scanned window
        bm = BalanceLedger().fold([mint(B, 10, 1), transfer(A, B, 25, 2)])

        self.assertEqual(bm.balances[A], 0)
        self.assertEqual(bm.holders(), {B: 35})
        self.assertEqual(len(bm.warnings), 1)
        w = bm.warnings[0]
        self.assertIsInstance(w, InconsistentLedgerWarning)
        self.assertEqual((w.address, w.block_number, w.shortfall), (A, 2, 25))

    def test_per_event_underflow_logs_stay_below_warning(self) -> None:
        events = [mint(B, 1, 1)] + [transfer(A, B, 5, 2 + i) for i in range(50)]

        with self.assertLogs("aavetrace.services.balance_ledger", level="DEBUG") as logs:
            bm = BalanceLedger().fold(events)

        self.assertEqual(len(bm.warnings), 50)
        self.assertEqual({r.levelname for r in logs.records}, {"DEBUG"})

    def test_fold_orders_by_block_and_log_index(self) -> None:
        shuffled = [transfer(A, B, 40, 2, 1), mint(A, 100, 2, 0), transfer(B, C, 10, 3)]

        bm = BalanceLedger().fold(shuffled)

        self.assertEqual(bm.holders(), {A: 60, B: 30, C: 10})
        self.assertEqual(bm.warnings, [])

    def test_refolding_is_idempotent(self) -> None:
        events = [mint(A, 100, 1), transfer(A, B, 40, 2), burn(B, 15, 3)]
        ledger = BalanceLedger()

        first = ledger.fold(events)
        second = ledger.fold(events)

        self.assertEqual(first.balances, second.balances)
        self.assertIsNot(first.balances, second.balances)

    def test_holder_sum_equals_mints_minus_burns(self) -> None:
        rng = random.Random(7)
        people = [addr(c) for c in "abcdef"]

        for _ in range(25):
            local = {p: 0 for p in people}
            events = []
            minted = burned = 0
            for block in range(1, 60):
                kind = rng.choice(("mint", "move", "burn"))
                who = rng.choice(people)
                if kind == "mint":
                    v = rng.randint(1, 10**24)
                    events.append(mint(who, v, block))
                    local[who] += v
                    minted += v
                elif local[who] > 0:
                    v = rng.randint(0, local[who])
                    local[who] -= v
                    if kind == "burn":
                        events.append(burn(who, v, block))
                        burned += v
                    else:
                        to = rng.choice(people)
                        events.append(transfer(who, to, v, block))
                        local[to] += v

            bm = BalanceLedger().fold(events)

            self.assertEqual(sum(bm.holders().values()), minted - burned)
            self.assertEqual(bm.holders(), {p: v for p, v in local.items() if v > 0})
            self.assertEqual(bm.warnings, [])

    def test_top_sorts_descending(self) -> None:
        bm = BalanceLedger().fold([mint(A, 1, 1), mint(B, 3, 1, 1), mint(C, 2, 1, 2)])

        self.assertEqual(bm.top(2), [(B, 3), (C, 2)])
        self.assertEqual(len(bm.top(0)), 3)


class AggregateByRecipientTests(unittest.TestCase):
    def test_only_counts_outflows_of_source(self) -> None:
        events = [transfer(A, B, 5), transfer(A, B, 7), transfer(A, C, 1), transfer(B, A, 100)]

        self.assertEqual(aggregate_by_recipient(events, A), {B: 12, C: 1})


class HolderServiceTests(unittest.TestCase):
    def _make_service(self, events, height: int = 100) -> HolderService:
        chain = StaticChainAdapter(height=height, transfers={TOKEN: events})
        return HolderService(chain, ChunkedLogScanner(chain, chunk_size=10, max_workers=2, backoff_base=0))

    def test_snapshot_at_block_ignores_later_events(self) -> None:
        events = [mint(A, 100, 10), transfer(A, B, 40, 20), transfer(B, C, 10, 60)]
        svc = self._make_service(events)

        bm = svc.get_token_holders(Token(TOKEN, "TKN", 5), end_block=30)

        self.assertEqual(bm.holders(), {A: 60, B: 40})

    def test_defaults_to_current_height(self) -> None:
        events = [mint(A, 100, 10), transfer(A, B, 40, 95)]
        svc = self._make_service(events, height=100)

        bm = svc.get_token_holders(Token(TOKEN, "TKN", 0))

        self.assertEqual(bm.holders(), {A: 60, B: 40})

    def test_scan_starting_after_history_reports_inconsistency(self) -> None:
        events = [mint(A, 100, 10), transfer(A, B, 40, 20)]
        svc = self._make_service(events)

        bm = svc.get_token_holders(Token(TOKEN, "TKN", 15), end_block=30)

        self.assertEqual(bm.holders(), {B: 40})
        self.assertEqual(len(bm.warnings), 1)

    def test_end_block_before_deployment_is_rejected(self) -> None:
        svc = self._make_service([])

        with self.assertRaises(ConfigError):
            svc.get_token_holders(Token(TOKEN, "TKN", 50), end_block=10)


if __name__ == "__main__":
    unittest.main()
