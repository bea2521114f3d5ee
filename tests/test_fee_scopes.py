from decimal import Decimal

import pytest

from schoolmgmt.models.finance import Fee
from schoolmgmt.services.fees import (
    BalanceSummary, ClassScope, FeeScope, LedgerTotals, SchoolScope, SectionScope, StudentContext, StudentScope,
    fee_applies, resolve_scope,
)

STUDENT = StudentContext(id=7, school_id=1, class_id=3, section_ids=frozenset({10, 11}))


def make_fee(scope, **fields):
    return Fee(
        school_id=fields.pop("school_id", 1),
        section_id=fields.pop("section_id", 10),
        fee_scope=scope,
        amount=Decimal("1000"),
        is_active=fields.pop("is_active", True),
        **fields,
    )


def test_resolve_each_scope():
    assert resolve_scope(make_fee("school")) == SchoolScope()
    assert resolve_scope(make_fee("section", section_id=11)) == SectionScope(11)
    assert resolve_scope(make_fee("class", class_id=3)) == ClassScope(3)
    assert resolve_scope(make_fee("student", student_id=7)) == StudentScope(7)


def test_malformed_fees_resolve_to_nothing():
    assert resolve_scope(make_fee("class")) is None
    assert resolve_scope(make_fee("student")) is None
    assert resolve_scope(make_fee("district")) is None


def test_school_fee_applies_to_everyone_in_the_school():
    assert fee_applies(make_fee("school"), STUDENT)
    assert not fee_applies(make_fee("school", school_id=2), STUDENT)


def test_section_fee_needs_membership():
    assert fee_applies(make_fee("section", section_id=11), STUDENT)
    assert not fee_applies(make_fee("section", section_id=12), STUDENT)


def test_class_and_student_fees():
    assert fee_applies(make_fee("class", class_id=3), STUDENT)
    assert not fee_applies(make_fee("class", class_id=4), STUDENT)
    assert fee_applies(make_fee("student", student_id=7), STUDENT)
    assert not fee_applies(make_fee("student", student_id=8), STUDENT)


def test_inactive_and_malformed_fees_never_apply():
    assert not fee_applies(make_fee("school", is_active=False), STUDENT)
    assert not fee_applies(make_fee("class"), STUDENT)


def test_student_without_class_gets_no_class_fees():
    orphan = StudentContext(id=8, school_id=1, class_id=None)
    assert not fee_applies(make_fee("class", class_id=3), orphan)


def test_balance_is_signed_and_outstanding_is_clamped():
    credit = BalanceSummary(
        student_id=1,
        total_fees=Decimal("100"),
        ledger=LedgerTotals(gateway_paid=Decimal("80"), manual_paid=Decimal("40"), gateway_count=1, manual_count=1),
    )
    assert credit.total_paid == Decimal("120")
    assert credit.balance == Decimal("-20")
    assert credit.outstanding == Decimal("0")
    assert credit.payment_count == 2
    assert not credit.is_debtor


def test_scope_base_class_is_abstract():
    with pytest.raises(TypeError):
        FeeScope()
