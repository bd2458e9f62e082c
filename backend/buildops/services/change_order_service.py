# Overview: Change-order creation and approval; approved cost impact flows into the contract amount.

from __future__ import annotations

import logging
import re

from sqlalchemy import func

from ..exceptions import NotFoundError, ValidationError
from ..models import ChangeOrder, ProjectContractor
from ..money import quantize_money
from ..permissions import Caller, require
from ..time_utils import utcnow
from ..validation import (
    CHANGE_ORDER_POLICY,
    enforce_rules_change_order,
    validate_payload,
)
from .concurrency import atomic, conditional_update

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

_CO_NUMBER = re.compile(r"^CO-(\d+)$")


class ChangeOrderService:
    def __init__(self, session, *, clock=utcnow) -> None:
        self.session = session
        self.clock = clock

    def get(self, co_id: int) -> ChangeOrder:
        co = self.session.get(ChangeOrder, co_id)
        if co is None:
            raise NotFoundError("ChangeOrder", co_id)
        return co

    def list_change_orders(self, *, project_id: int | None = None, status: str | None = None) -> list[ChangeOrder]:
        query = self.session.query(ChangeOrder)
        if project_id is not None:
            query = query.filter(ChangeOrder.project_id == project_id)
        if status:
            if status not in (PENDING, APPROVED, REJECTED):
                raise ValidationError(f"Unknown change order status: {status}")
            query = query.filter(ChangeOrder.status == status)
        return query.order_by(ChangeOrder.created_at.desc(), ChangeOrder.id.desc()).all()

    def _contract(self, project_id: int, contractor_id: int) -> ProjectContractor:
        contract = (
            self.session.query(ProjectContractor)
            .filter_by(project_id=project_id, contractor_id=contractor_id)
            .first()
        )
        if contract is None:
            raise ValidationError(
                f"Contractor {contractor_id} has no contract on project {project_id}",
                {"project_id": project_id, "contractor_id": contractor_id},
            )
        return contract

    def next_co_number(self, project_id: int) -> str:
        numbers = self.session.query(ChangeOrder.co_number).filter(ChangeOrder.project_id == project_id).all()
        highest = 0
        for (co_number,) in numbers:
            match = _CO_NUMBER.match(co_number or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return f"CO-{highest + 1:03d}"

    def create(self, caller: Caller, payload: dict) -> ChangeOrder:
        require(caller, "CREATE_CHANGE_ORDERS", resource="change_order")
        patch = validate_payload(model=ChangeOrder, payload=payload, policy=CHANGE_ORDER_POLICY, partial=False)
        enforce_rules_change_order(patch)
        patch["cost_impact"] = quantize_money(patch["cost_impact"])

        contract = self._contract(patch["project_id"], patch["contractor_id"])

        with atomic(self.session):
            co = ChangeOrder(
                **patch,
                co_number=self.next_co_number(patch["project_id"]),
                status=PENDING,
                created_by=caller.user_id,
                created_at=self.clock(),
            )
            self.session.add(co)
            contract.change_orders_pending = True

        logger.info(
            "Change order %s (%s) created project=%s cost_impact=%s",
            co.id, co.co_number, co.project_id, co.cost_impact,
        )
        return co

    def _refresh_pending_flag(self, contract: ProjectContractor) -> None:
        pending = (
            self.session.query(func.count(ChangeOrder.id))
            .filter_by(project_id=contract.project_id, contractor_id=contract.contractor_id, status=PENDING)
            .scalar()
        )
        contract.change_orders_pending = bool(pending)

    def approve(self, co_id: int, caller: Caller, *, comment: str | None = None) -> ChangeOrder:
        """
        pending -> approved. The cost impact is added to the contract amount,
        which may not go negative.
        """
        require(caller, "APPROVE_CHANGE_ORDERS", resource=f"change_order:{co_id}")
        co = self.get(co_id)
        if co.status != PENDING:
            raise ValidationError(
                f"Change order {co.id} is {co.status}; only pending change orders can be approved",
                {"id": co.id, "from_status": co.status, "action": "approve"},
            )
        contract = self._contract(co.project_id, co.contractor_id)
        new_amount = quantize_money(contract.contract_amount + co.cost_impact)
        if new_amount < 0:
            raise ValidationError(
                f"Change order {co.id} would make the contract amount negative",
                {"id": co.id, "contract_amount": str(contract.contract_amount), "cost_impact": str(co.cost_impact)},
            )

        now = self.clock()
        with atomic(self.session):
            conditional_update(
                self.session,
                co,
                expected_status=PENDING,
                values={"status": APPROVED, "approved_at": now, "approved_by": caller.user_id},
            )
            contract.contract_amount = new_amount
            self._refresh_pending_flag(contract)

        logger.info(
            "Change order %s approved by user=%s; contract %s amount now %s%s",
            co_id, caller.user_id, contract.id, new_amount,
            f" ({comment})" if comment else "",
        )
        return co

    def reject(self, co_id: int, caller: Caller, *, reason: str | None) -> ChangeOrder:
        require(caller, "APPROVE_CHANGE_ORDERS", resource=f"change_order:{co_id}")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason is required to reject a change order", {"id": co_id, "action": "reject"})
        co = self.get(co_id)
        if co.status != PENDING:
            raise ValidationError(
                f"Change order {co.id} is {co.status}; only pending change orders can be rejected",
                {"id": co.id, "from_status": co.status, "action": "reject"},
            )
        contract = self._contract(co.project_id, co.contractor_id)
        with atomic(self.session):
            conditional_update(
                self.session,
                co,
                expected_status=PENDING,
                values={
                    "status": REJECTED,
                    "rejected_at": self.clock(),
                    "rejected_by": caller.user_id,
                    "rejection_reason": reason[:1000],
                },
            )
            self._refresh_pending_flag(contract)
        logger.info("Change order %s rejected by user=%s", co_id, caller.user_id)
        return co
