from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional
import uuid

from household_budget.core.deps import get_db, get_household_id, get_actor_id
from household_budget.schemas.budget import (
    PersonalBudget,
    PersonalBudgetCreate,
    PersonalBudgetUpdate,
    TemplateDraft,
    TemplateStatus,
)
from household_budget.services.personal_budget_service import PersonalBudgetService

router = APIRouter()


@router.get("/active", response_model=TemplateStatus)
def get_active_template(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Active template, or a setup prompt for households that have none yet"""
    budget = PersonalBudgetService(db).find_active(household_id)
    if budget is None:
        return TemplateStatus(
            setup_required=True,
            message="Set up your budget to start tracking monthly limits",
        )
    return TemplateStatus(setup_required=False, template=budget)


@router.get("/history", response_model=List[PersonalBudget])
def get_template_history(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """All template versions, newest first"""
    return PersonalBudgetService(db).get_history(household_id)


@router.post("/", response_model=PersonalBudget, status_code=status.HTTP_201_CREATED)
def create_template(
    budget_in: PersonalBudgetCreate,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Create a template version from scratch and make it active"""
    return PersonalBudgetService(db).create(
        household_id,
        categories=budget_in.categories,
        global_settings=budget_in.global_settings,
        name=budget_in.name,
        notes=budget_in.notes,
        created_by=actor_id,
    )


@router.put("/active", response_model=PersonalBudget)
def update_active_template(
    budget_in: PersonalBudgetUpdate,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Save changes to the active template as a new version"""
    changes = budget_in.model_dump(exclude_unset=True)

    def apply_changes(draft: TemplateDraft):
        if "name" in changes and budget_in.name:
            draft.name = budget_in.name
        if budget_in.categories is not None:
            draft.categories = budget_in.categories
        if budget_in.global_settings is not None:
            draft.global_settings = budget_in.global_settings
        if "notes" in changes:
            draft.notes = budget_in.notes

    return PersonalBudgetService(db).update(household_id, apply_changes, created_by=actor_id)


@router.get("/{budget_id}", response_model=PersonalBudget)
def get_template_version(
    budget_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return PersonalBudgetService(db).get_by_id(household_id, budget_id)


@router.post("/{budget_id}/activate", response_model=PersonalBudget)
def activate_template_version(
    budget_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Roll back to an earlier template version"""
    return PersonalBudgetService(db).set_active(household_id, budget_id, created_by=actor_id)


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template_version(
    budget_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    PersonalBudgetService(db).delete(household_id, budget_id)
