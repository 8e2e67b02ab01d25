from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.commercial.actors import StudioActor, resolve_studio, resolve_studio_user_id
from app.commercial.cache import revalidate_promise
from app.commercial.errors import ConflictError, NotFoundError, ValidationFailedError
from app.commercial.logs import promise_log_service
from app.commercial.models import Contact, Promise
from app.commercial.realtime import publish_change
from app.commercial.schemas import ContactCreate, ContactRead, ContactUpdate


def normalize_phone(phone: str) -> str:
    normalized = "".join(char for char in phone.strip() if char.isdigit() or char == "+")
    if not normalized:
        raise ValidationFailedError("phone number is required", code="invalid_phone")
    return normalized


class ContactService:
    def find_by_phone(self, session: Session, studio_id: uuid.UUID, phone: str) -> Contact | None:
        return session.scalar(
            select(Contact).where(Contact.studio_id == studio_id, Contact.phone == normalize_phone(phone))
        )

    def upsert(
        self,
        session: Session,
        studio_id: uuid.UUID,
        *,
        name: str,
        phone: str,
        email: str | None,
        acquisition_channel_id: uuid.UUID | None,
        social_network_id: uuid.UUID | None,
        referrer_contact_id: uuid.UUID | None,
        referrer_name: str | None,
        is_test: bool,
    ) -> Contact:
        contact = self.find_by_phone(session, studio_id, phone)
        if contact is None:
            contact = Contact(studio_id=studio_id, phone=normalize_phone(phone), is_test=is_test)
            session.add(contact)
        contact.name = name.strip()
        if email:
            contact.email = email
        contact.acquisition_channel_id = acquisition_channel_id
        contact.social_network_id = social_network_id
        contact.referrer_contact_id = referrer_contact_id
        contact.referrer_name = referrer_name
        session.flush()
        return contact

    def create_contact(self, session: Session, studio_slug: str, dto: ContactCreate) -> ContactRead:
        studio = resolve_studio(session, studio_slug)
        if self.find_by_phone(session, studio.id, dto.phone) is not None:
            raise ConflictError("a contact with this phone already exists", code="duplicate_phone")

        data = dto.model_dump()
        data["phone"] = normalize_phone(dto.phone)
        contact = Contact(studio_id=studio.id, **data)
        session.add(contact)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("a contact with this phone already exists", code="duplicate_phone")
        session.refresh(contact)
        publish_change(studio_id=studio.id, table="contacts", operation="INSERT", record_id=contact.id)
        return ContactRead.model_validate(contact)

    def update_contact(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        contact_id: uuid.UUID,
        dto: ContactUpdate,
    ) -> ContactRead:
        """Apply ``dto``; every promise of the contact gets a ``contact_updated`` entry listing the changed fields."""
        studio = resolve_studio(session, studio_slug)
        contact = session.get(Contact, contact_id)
        if contact is None or contact.studio_id != studio.id:
            raise NotFoundError("contact not found", code="contact_not_found")

        changes: list[str] = []
        values = dto.model_dump(exclude_unset=True)
        if values.get("phone") is not None:
            phone = normalize_phone(values["phone"])
            if phone != contact.phone:
                duplicate = self.find_by_phone(session, studio.id, phone)
                if duplicate is not None and duplicate.id != contact.id:
                    raise ConflictError("a contact with this phone already exists", code="duplicate_phone")
                contact.phone = phone
                changes.append("teléfono")
        if values.get("name") is not None and values["name"].strip() != contact.name:
            contact.name = values["name"].strip()
            changes.append("nombre")
        if "email" in values and values["email"] != contact.email:
            contact.email = values["email"]
            changes.append("email")

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("a contact with this phone already exists", code="duplicate_phone")
        session.refresh(contact)
        result = ContactRead.model_validate(contact)
        if not changes:
            return result

        revalidate_promise(studio_slug)
        publish_change(studio_id=studio.id, table="contacts", operation="UPDATE", record_id=contact.id)
        user_id = resolve_studio_user_id(session, studio.id, actor)
        promise_ids = list(session.scalars(select(Promise.id).where(Promise.contact_id == contact.id)))
        for promise_id in promise_ids:
            promise_log_service.record_best_effort(
                session,
                studio_id=studio.id,
                studio_slug=studio_slug,
                promise_id=promise_id,
                action="contact_updated",
                metadata={"changes": changes},
                user_id=user_id,
            )
        return result


contact_service = ContactService()
