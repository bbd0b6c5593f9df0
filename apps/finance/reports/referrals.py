"""
Referral attribution from two independent identity spaces.

App referrals come from ``referred_by`` on student rows and are attributed
one hop only: a referrer's own referrer is never followed, so cycles in the
raw data cannot recurse. Website referrals are grouped by the referral code
typed into a booking. The two spaces are summed side by side and never merged
into a single referrer identity.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from .records import (
    REFERRAL_SOURCE_APP,
    REFERRAL_SOURCE_WEBSITE,
    ZERO,
    CombinedReferrerTotals,
    ReferralTotals,
    ReferredStudent,
    ReferrerSummary,
    quantize,
    to_decimal,
)

logger = logging.getLogger(__name__)

UNKNOWN_REFERRER = 'Unknown'


def _student_key(student):
    if hasattr(student, 'student_id'):
        return student.student_id
    return student.id


def _values(summaries):
    if hasattr(summaries, 'values'):
        return list(summaries.values())
    return list(summaries)


def resolve_app_referrals(students) -> dict:
    """Referrer summaries keyed by the referrer's student id.

    Ids are matched by their string form, so ``referred_by='1'`` finds the
    student with ``id=1`` and both attribute to the same referrer.
    """
    students = list(students)
    by_id = {str(_student_key(student)): student for student in students}

    entries = {}
    for student in students:
        referrer_id = student.referred_by
        if referrer_id is None:
            continue
        student_id = _student_key(student)
        if str(referrer_id) == str(student_id):
            logger.warning('Ignoring self-referral on student %s.', student_id)
            continue

        referrer = by_id.get(str(referrer_id))
        if referrer is not None:
            referrer_id = _student_key(referrer)
        entry = entries.get(referrer_id)
        if entry is None:
            entry = {
                'name': referrer.display_name if referrer else UNKNOWN_REFERRER,
                'email': referrer.email if referrer else '',
                'count': 0,
                'revenue': ZERO,
                'referred': [],
            }
            entries[referrer_id] = entry

        revenue = to_decimal(student.total_revenue)
        entry['count'] += 1
        entry['revenue'] += revenue
        entry['referred'].append(
            ReferredStudent(
                referrer_id=referrer_id,
                referrer_name=entry['name'],
                student_id=student_id,
                student_name=student.display_name,
                student_email=student.email,
                revenue=revenue,
                is_active=student.is_active,
            )
        )

    return {
        referrer_id: ReferrerSummary(
            key=referrer_id,
            display_name=entry['name'],
            referral_count=entry['count'],
            referral_revenue=entry['revenue'],
            source=REFERRAL_SOURCE_APP,
            email=entry['email'],
            referred=tuple(entry['referred']),
        )
        for referrer_id, entry in entries.items()
    }


def resolve_website_referrals(bookings) -> dict:
    counts = {}
    revenue = {}
    for booking in bookings:
        code = (booking.referral_code or '').strip()
        if not code:
            continue
        counts[code] = counts.get(code, 0) + 1
        revenue[code] = revenue.get(code, ZERO) + to_decimal(booking.price)

    return {
        code: ReferrerSummary(
            key=code,
            display_name=code,
            referral_count=counts[code],
            referral_revenue=revenue[code],
            source=REFERRAL_SOURCE_WEBSITE,
        )
        for code in counts
    }


def ranking_key(summary):
    return (
        -summary.referral_revenue,
        -summary.referral_count,
        summary.display_name.casefold(),
        str(summary.key),
    )


def rank_referrers(summaries, limit=None) -> list:
    """Leaderboard order: revenue desc, count desc, then name asc."""
    ranked = sorted(_values(summaries), key=ranking_key)
    if limit is not None:
        return ranked[:limit]
    return ranked


def referral_totals(summaries) -> ReferralTotals:
    if isinstance(summaries, ReferralTotals):
        return summaries
    values = _values(summaries)
    return ReferralTotals(
        total_referrals=sum(summary.referral_count for summary in values),
        total_revenue=sum((summary.referral_revenue for summary in values), ZERO),
        unique_referrers=len(values),
    )


def combine(app, website) -> CombinedReferrerTotals:
    app_totals = referral_totals(app)
    website_totals = referral_totals(website)
    return CombinedReferrerTotals(
        total_referrals=app_totals.total_referrals + website_totals.total_referrals,
        total_revenue=app_totals.total_revenue + website_totals.total_revenue,
        unique_referrers=app_totals.unique_referrers + website_totals.unique_referrers,
        app=app_totals,
        website=website_totals,
    )


def referral_details(app_referrals) -> list:
    details = [detail for summary in _values(app_referrals) for detail in summary.referred]
    return sorted(details, key=lambda detail: (-detail.revenue, detail.student_name.casefold()))


@dataclass(frozen=True)
class ReferralOverview:
    total_referrals: int
    total_referral_revenue: Decimal
    active_referrers: int
    avg_revenue_per_referral: Decimal


def referral_overview(students, app_referrals) -> ReferralOverview:
    active_by_id = {str(_student_key(student)): student.is_active for student in students}
    totals = referral_totals(app_referrals)
    # Referrers missing from the student list still count as active.
    active_referrers = sum(1 for referrer_id in _keys(app_referrals) if active_by_id.get(str(referrer_id), True))
    average = ZERO
    if totals.total_referrals:
        average = quantize(totals.total_revenue / totals.total_referrals)
    return ReferralOverview(
        total_referrals=totals.total_referrals,
        total_referral_revenue=totals.total_revenue,
        active_referrers=active_referrers,
        avg_revenue_per_referral=average,
    )


def _keys(summaries):
    return [summary.key for summary in _values(summaries)]
