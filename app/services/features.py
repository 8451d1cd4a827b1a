"""Credit-gated features: package generation and Business Health Score runs."""

from pydantic import BaseModel

from app.core.exceptions import BadRequestError, NotAuthenticatedError
from app.core.logging import get_logger
from app.models.credit_balance import Currency
from app.models.queue_entry import QueueEntry
from app.services.credits import DeductResult, LedgerService
from app.services.notifications import NotificationService, notify_quietly
from app.services.package_queue import QueueService

log = get_logger(__name__)

BUSINESS_HEALTH_SCORE = "BUSINESS_HEALTH_SCORE"


class PackageDefinition(BaseModel):
    code: str
    title: str
    credits: int
    documents: list[str]


PACKAGES: dict[str, PackageDefinition] = {
    p.code: p
    for p in (
        PackageDefinition(
            code="PYBLC1",
            title="Plan Your Business Legacy with Confidence",
            credits=8,
            documents=[
                "Founder Exit Strategy Report",
                "Exit Readiness Blueprint Report",
                "Stress-Free Exit Roadmap Report",
                "Legacy & Exit Planning Report",
            ],
        ),
        PackageDefinition(
            code="USICD2",
            title="Understand and Serve Your Ideal Customers Deeply",
            credits=6,
            documents=[
                "Know Your Customer Persona Toolkit (Exercise 6)",
                "Customer Journey Mapping Workshops",
                "Ideal Customer Profile Scorecard",
                "Engagement Strategy Plan",
            ],
        ),
        PackageDefinition(
            code="DIIP3",
            title="Differentiate Yourself with an Irresistible Proposition",
            credits=7,
            documents=[
                "1+1 Proposition Creation Workshop (Exercise 7)",
                "Strategic Differentiation Playbook",
                "Emotional Hook Messaging Templates",
                "Customer Delight Blueprint",
            ],
        ),
        PackageDefinition(
            code="ETYSDD4",
            title="Empower Your Team and Step Back from the Day-to-Day",
            credits=8,
            documents=[
                "Delegation Audit and Scorecard (Exercise 18)",
                "Leadership Empowerment Workshops",
                "Team Accountability & Development Toolkit",
                "Freedom Framework: Reducing Founder Bottlenecks",
            ],
        ),
        PackageDefinition(
            code="SGKCR5",
            title="Strengthen and Grow Your Key Customer Relationships",
            credits=6,
            documents=[
                "Key Customer Mapping and Insights (Exercise 27)",
                "Customer Relationship Management (CRM) Playbook",
                "Second-Order Sales Strategy Plan (based on Chapter 23)",
                "Relationship Building and Loyalty Tools",
            ],
        ),
    )
}

HEALTH_SCORE_COST = 1  # health-score credits per run


class FeatureCost(BaseModel):
    feature: str
    currency: Currency
    amount: int


def get_credit_cost(feature: str) -> FeatureCost:
    """Price of a feature; unknown features are free."""
    if feature == BUSINESS_HEALTH_SCORE:
        return FeatureCost(feature=feature, currency=Currency.HEALTH_SCORE, amount=HEALTH_SCORE_COST)
    package = PACKAGES.get(feature)
    if package is not None:
        return FeatureCost(feature=feature, currency=Currency.GENERAL, amount=package.credits)
    return FeatureCost(feature=feature, currency=Currency.GENERAL, amount=0)


def get_pricing() -> dict:
    return {
        "health_score": {"currency": Currency.HEALTH_SCORE.value, "credits": HEALTH_SCORE_COST},
        "packages": {code: {"title": p.title, "credits": p.credits} for code, p in PACKAGES.items()},
    }


class PackageRequest(BaseModel):
    entry: QueueEntry
    deduction: DeductResult


class FeatureService:
    """Charge first, then do the work; a failed enqueue gives the credits back."""

    def __init__(
        self,
        ledger: LedgerService,
        queue: QueueService,
        notifications: NotificationService,
    ) -> None:
        self.ledger = ledger
        self.queue = queue
        self.notifications = notifications

    async def generate_package(
        self,
        owner_id: str | None,
        report_id: str,
        package_code: str,
        documents: list[str] | None = None,
        idempotency_key: str | None = None,
        estimated_minutes: int | None = None,
    ) -> PackageRequest:
        if not owner_id:
            raise NotAuthenticatedError("You must be logged in to use this feature")
        package = PACKAGES.get(package_code)
        if package is None:
            raise BadRequestError(f"Unknown package: {package_code}")
        deduction = await self.ledger.deduct(
            owner_id,
            Currency.GENERAL,
            package.credits,
            f"Package generation: {package.title}",
            package.code,
            idempotency_key=idempotency_key,
        )
        deduction.raise_for_error()

        if deduction.replayed:
            for entry in await self.queue.list_active_for_report(owner_id, report_id):
                if entry.package_name == package.title:
                    return PackageRequest(entry=entry, deduction=deduction)
            raise BadRequestError("This package request was already processed")

        try:
            entry = await self.queue.enqueue(
                owner_id,
                report_id,
                package.title,
                documents if documents is not None else package.documents,
                estimated_minutes=estimated_minutes,
            )
        except BaseException:
            # Any failure after the charge, cancellation included, gives the credits back.
            log.exception("package_enqueue_failed", owner_id=owner_id, package_code=package.code, report_id=report_id)
            await self.ledger.add(
                owner_id,
                Currency.GENERAL,
                package.credits,
                f"Refund: {package.title} could not be queued",
                "refund",
                idempotency_key=f"refund:{deduction.transaction.id}",
            )
            raise

        await notify_quietly(self.notifications.notify_analysis_started(owner_id, package.title))
        if deduction.low_balance:
            await notify_quietly(
                self.notifications.notify_low_credits(owner_id, self.ledger.low_credit_threshold)
            )
        return PackageRequest(entry=entry, deduction=deduction)

    async def run_health_score(
        self,
        owner_id: str | None,
        report_name: str,
        idempotency_key: str | None = None,
    ) -> DeductResult:
        """Charge one health-score credit for a Business Health Score submission."""
        deduction = await self.ledger.deduct(
            owner_id,
            Currency.HEALTH_SCORE,
            HEALTH_SCORE_COST,
            f"Business Health Score: {report_name}",
            BUSINESS_HEALTH_SCORE,
            idempotency_key=idempotency_key,
        )
        if deduction.success and not deduction.replayed:
            await notify_quietly(self.notifications.notify_analysis_started(owner_id, "Business Health Score"))
        return deduction
