"""
Unit Tests - Cross-Source Funnel
"""
import pytest

from commerce_insights.aggregation.funnel import (
    JOURNEY_STAGES,
    FunnelComposer,
    commerce_stage_counts,
    event_tracker_stage_counts,
    session_stage_counts,
    translate_counts,
)
from commerce_insights.schemas.events import FunnelStage, FunnelStepSource, SessionOverview, SourceSystem


def step(stage: FunnelStage, count: int, source: SourceSystem = SourceSystem.EVENT_TRACKER) -> FunnelStepSource:
    return FunnelStepSource(stage=stage, count=count, source=source)


@pytest.fixture
def composer() -> FunnelComposer:
    return FunnelComposer()


class TestTranslation:
    """Tests for vocabulary translation"""

    def test_event_tracker_names(self):
        steps = event_tracker_stage_counts({
            "product.viewed": 100,
            "product.added_to_cart": 20,
            "page.scrolled": 999,
        })
        assert {(s.stage, s.count) for s in steps} == {
            (FunnelStage.PRODUCT_VIEW, 100),
            (FunnelStage.ADD_TO_CART, 20),
        }
        assert all(s.source == SourceSystem.EVENT_TRACKER for s in steps)

    def test_negative_counts_clamped(self):
        steps = translate_counts({"sessions": -5}, {"sessions": FunnelStage.SESSION}, SourceSystem.SESSION_ANALYTICS)
        assert steps[0].count == 0

    def test_session_overview(self):
        steps = session_stage_counts(SessionOverview(sessions=5000, purchases=7))
        assert {(s.stage, s.count) for s in steps} == {
            (FunnelStage.SESSION, 5000),
            (FunnelStage.ORDER_PLACED, 7),
        }
        assert session_stage_counts(None) == []

    def test_commerce_counts(self, orders):
        counts = {s.stage: s.count for s in commerce_stage_counts(orders)}
        assert counts == {
            FunnelStage.ORDER_PLACED: 5,
            FunnelStage.PAYMENT_CAPTURED: 4,
            FunnelStage.SHIPMENT_CREATED: 2,
            FunnelStage.DELIVERY_CONFIRMED: 1,
        }


class TestSourceSelection:
    """Tests for authoritative source selection"""

    def test_commerce_wins_transactional_stages(self, composer):
        selected = composer.select([
            step(FunnelStage.ORDER_PLACED, 50),
            step(FunnelStage.ORDER_PLACED, 40, SourceSystem.COMMERCE_BACKEND),
            step(FunnelStage.ORDER_PLACED, 70, SourceSystem.SESSION_ANALYTICS),
        ])
        assert selected[FunnelStage.ORDER_PLACED].count == 40
        assert selected[FunnelStage.ORDER_PLACED].source == SourceSystem.COMMERCE_BACKEND

    def test_session_analytics_wins_traffic(self, composer):
        selected = composer.select([
            step(FunnelStage.SESSION, 300),
            step(FunnelStage.SESSION, 900, SourceSystem.SESSION_ANALYTICS),
        ])
        assert selected[FunnelStage.SESSION].count == 900

    def test_event_tracker_wins_interaction(self, composer):
        selected = composer.select([
            step(FunnelStage.PRODUCT_VIEW, 80, SourceSystem.SESSION_ANALYTICS),
            step(FunnelStage.PRODUCT_VIEW, 120),
        ])
        assert selected[FunnelStage.PRODUCT_VIEW].source == SourceSystem.EVENT_TRACKER

    def test_counts_are_never_summed(self, composer):
        funnel = composer.compose([
            step(FunnelStage.PRODUCT_VIEW, 100),
            step(FunnelStage.ORDER_PLACED, 10),
            step(FunnelStage.ORDER_PLACED, 8, SourceSystem.COMMERCE_BACKEND),
        ])
        placed = next(s for s in funnel.steps if s.stage == FunnelStage.ORDER_PLACED)
        assert placed.count == 8


class TestComposition:
    """Tests for step display rules and rates"""

    def test_full_funnel(self, composer, orders):
        sources = event_tracker_stage_counts({
            "product.viewed": 1000,
            "product.added_to_cart": 200,
            "checkout.started": 50,
        }) + commerce_stage_counts(orders)

        funnel = composer.compose(sources)

        assert [(s.stage, s.count) for s in funnel.steps] == [
            (FunnelStage.PRODUCT_VIEW, 1000),
            (FunnelStage.ADD_TO_CART, 200),
            (FunnelStage.CHECKOUT_STARTED, 50),
            (FunnelStage.ORDER_PLACED, 5),
            (FunnelStage.PAYMENT_CAPTURED, 4),
            (FunnelStage.SHIPMENT_CREATED, 2),
            (FunnelStage.DELIVERY_CONFIRMED, 1),
        ]
        first = funnel.transitions[0]
        assert first.pass_rate == pytest.approx(0.2)
        assert first.drop_rate == pytest.approx(0.8)
        assert len(funnel.transitions) == len(funnel.steps) - 1
        assert funnel.overall_conversion == pytest.approx(0.001)

    def test_only_first_step_reported(self, composer):
        """Views with no downstream activity show a single step"""
        funnel = composer.compose([
            step(FunnelStage.PRODUCT_VIEW, 1000),
            step(FunnelStage.ADD_TO_CART, 0),
            step(FunnelStage.ORDER_PLACED, 0, SourceSystem.COMMERCE_BACKEND),
        ])

        assert [(s.stage, s.count) for s in funnel.steps] == [(FunnelStage.PRODUCT_VIEW, 1000)]
        assert funnel.transitions == []
        assert funnel.overall_conversion is None

    def test_first_step_shown_when_zero(self, composer):
        funnel = composer.compose([step(FunnelStage.ADD_TO_CART, 10)])

        assert [(s.stage, s.count) for s in funnel.steps] == [
            (FunnelStage.PRODUCT_VIEW, 0),
            (FunnelStage.ADD_TO_CART, 10),
        ]
        assert funnel.steps[0].source is None
        assert funnel.transitions[0].pass_rate is None
        assert funnel.transitions[0].drop_rate is None
        assert funnel.overall_conversion is None

    def test_all_zero_is_empty(self, composer):
        funnel = composer.compose([step(FunnelStage.PRODUCT_VIEW, 0)])
        assert funnel.is_empty
        assert funnel.overall_conversion is None
        assert composer.compose([]).is_empty

    def test_journey_stages(self, composer, orders):
        sources = (
            session_stage_counts(SessionOverview(sessions=5000, purchases=7))
            + event_tracker_stage_counts({"product.viewed": 1000})
            + commerce_stage_counts(orders)
        )

        funnel = composer.compose(sources, stages=JOURNEY_STAGES)

        assert funnel.steps[0].stage == FunnelStage.SESSION
        assert funnel.steps[0].source == SourceSystem.SESSION_ANALYTICS
        placed = next(s for s in funnel.steps if s.stage == FunnelStage.ORDER_PLACED)
        assert placed.source == SourceSystem.COMMERCE_BACKEND
        assert funnel.overall_conversion == pytest.approx(1 / 5000)

    def test_custom_precedence(self):
        composer = FunnelComposer(precedence={
            FunnelStage.ORDER_PLACED: [SourceSystem.EVENT_TRACKER, SourceSystem.COMMERCE_BACKEND],
        })
        selected = composer.select([
            step(FunnelStage.ORDER_PLACED, 10),
            step(FunnelStage.ORDER_PLACED, 8, SourceSystem.COMMERCE_BACKEND),
        ])
        assert selected[FunnelStage.ORDER_PLACED].count == 10
