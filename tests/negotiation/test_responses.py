"""Tests for templated outbound messages."""

from decimal import Decimal

from dealflow.domain.models import BudgetConstraints
from dealflow.domain.types import StrategyAction
from dealflow.negotiation.responses import counter_offer_band, format_money, render_response

BUDGET = BudgetConstraints(max_budget=Decimal("2000"))


def test_counter_offer_band():
    assert counter_offer_band(BUDGET) == (Decimal("1600"), Decimal("2000"))


def test_format_money():
    assert format_money(Decimal("1600")) == "$1,600"
    assert format_money(Decimal("1250.5")) == "$1,250.50"
    assert format_money(Decimal("25000"), "INR") == "25,000 INR"


def test_negotiate_message_quotes_the_band():
    message = render_response(StrategyAction.NEGOTIATE, BUDGET)
    assert "range of $1,600 - $2,000" in message


def test_accept_and_decline_have_templates():
    assert "move forward" in render_response(StrategyAction.ACCEPT, BUDGET)
    assert "right fit" in render_response(StrategyAction.DECLINE_POLITELY, BUDGET)


def test_flag_for_review_sends_nothing():
    assert render_response(StrategyAction.FLAG_FOR_REVIEW, BUDGET) is None
