from typing import Optional
import logging

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlmodel import Session, col, select

from .auth import CurrentUser, is_owner_or_admin
from .models import Item, Loan, LoanCreate
from .timeutils import to_display, utcnow

logger = logging.getLogger(__name__)


def get_item_or_404(session: Session, item_id: str) -> Item:
    item = session.get(Item, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def get_loan_or_404(session: Session, loan_id: str) -> Loan:
    loan = session.get(Loan, loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan


def list_items(session: Session, category: Optional[str] = None) -> list[Item]:
    query = select(Item)
    if category:
        query = query.where(col(Item.category).contains(category))
    return list(session.exec(query.order_by(Item.name)).all())


def create_loan(session: Session, loan: LoanCreate, borrower: CurrentUser) -> Loan:
    item = get_item_or_404(session, loan.item_id)
    now = utcnow()
    if to_display(loan.expected_return_date).date() < to_display(now).date():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="expected_return_date cannot be in the past",
        )

    # Single conditional statement; concurrent loans cannot oversell.
    result = session.exec(
        update(Item)
        .where(col(Item.id) == item.id)
        .where(col(Item.available_quantity) >= loan.quantity)
        .values(available_quantity=Item.available_quantity - loan.quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        logger.info(
            "Loan of %d x %s by %s refused: insufficient quantity",
            loan.quantity,
            item.id,
            borrower.uid,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Insufficient quantity of {item.name} available.",
        )

    db_loan = Loan(
        **loan.model_dump(),
        item_name=item.name,
        user_id=borrower.uid,
        user_display_name=borrower.display_name,
        user_email=borrower.email,
        loan_date=now,
    )
    session.add(db_loan)
    session.commit()
    session.refresh(db_loan)
    logger.info(
        "Loan %s: %d x %s to %s", db_loan.id, db_loan.quantity, item.id, borrower.uid
    )
    return db_loan


def return_loan(session: Session, loan_id: str, user: CurrentUser) -> Loan:
    loan = get_loan_or_404(session, loan_id)
    if not is_owner_or_admin(user, loan.user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorised to return someone else's loan",
        )

    closed = session.exec(
        update(Loan)
        .where(col(Loan.id) == loan.id)
        .where(col(Loan.return_date).is_(None))
        .values(return_date=utcnow())
        .execution_options(synchronize_session=False)
    )
    if closed.rowcount != 1:
        session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Loan has already been returned",
        )

    restocked = session.exec(
        update(Item)
        .where(col(Item.id) == loan.item_id)
        .where(
            col(Item.available_quantity) + loan.quantity <= col(Item.total_quantity)
        )
        .values(available_quantity=Item.available_quantity + loan.quantity)
        .execution_options(synchronize_session=False)
    )
    if restocked.rowcount != 1:
        session.rollback()
        logger.error(
            "Return of loan %s would push %s above its total quantity",
            loan.id,
            loan.item_id,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Item quantity would exceed its total",
        )

    session.commit()
    session.refresh(loan)
    logger.info("Loan %s returned by %s", loan.id, user.uid)
    return loan


def list_loans(
    session: Session, active_only: bool = False, user_id: Optional[str] = None
) -> list[Loan]:
    query = select(Loan)
    if active_only:
        query = query.where(col(Loan.return_date).is_(None))
    if user_id:
        query = query.where(Loan.user_id == user_id)
    return list(session.exec(query.order_by(col(Loan.loan_date).desc())).all())
