"""
Identity reconciliation over contact records.

A submission (email and/or phone number) is matched against stored contacts,
the matches are expanded into the identity groups they belong to, and the
groups are consolidated: a brand-new primary when nothing matched, a new
secondary when one identity gains information, or a merge onto the oldest
primary when the submission links several identities.

All functions take the store explicitly. Callers run one identify_contact()
call inside one unit of work so its reads and writes are atomic.
"""

import logging
from typing import Dict, Iterable, List, Optional

from contact_store import ContactStore
from db_models import ContactRecord, ContactResponse, IdentityGroup, LinkPrecedence
from exceptions import ContactNotFoundError, InvalidInputError

logger = logging.getLogger(__name__)


def find_matching_contacts(store: ContactStore, email: Optional[str] = None,
                           phone: Optional[str] = None) -> List[ContactRecord]:
    contacts = store.find_by_email_or_phone(email, phone)
    return sorted(contacts, key=lambda c: c.sort_key)


def find_primary_id(contact: ContactRecord, contacts_by_id: Dict[int, ContactRecord]) -> int:
    """Follow linkedId from ``contact`` until a primary is reached.

    A cycle makes ``contact`` its own primary. A link pointing at a contact
    that is not in ``contacts_by_id`` makes the contact holding that link the
    primary. Both cases are logged, never raised.
    """
    visited = set()
    current = contact

    while not current.is_primary:
        visited.add(current.id)
        linked = contacts_by_id.get(current.linkedId) if current.linkedId is not None else None

        if linked is None:
            logger.warning(
                "Contact %s links to missing contact %s, treating it as a primary",
                current.id, current.linkedId,
            )
            return current.id

        if linked.id in visited:
            logger.warning("Circular link detected from contact %s, treating it as a primary", contact.id)
            return contact.id

        current = linked

    return current.id


def resolve_identity_groups(store: ContactStore, matches: Iterable[ContactRecord]) -> List[IdentityGroup]:
    """Expand matched contacts into every identity group they touch.

    Groups come back ordered oldest primary first.
    """
    matches = list(matches)
    if not matches:
        return []

    ids = {c.id for c in matches}
    ids.update(c.linkedId for c in matches if not c.is_primary and c.linkedId is not None)

    related = sorted(store.find_by_ids_or_linked_ids(ids), key=lambda c: c.sort_key)
    contacts_by_id = {c.id: c for c in related}

    groups: Dict[int, IdentityGroup] = {}
    for contact in related:
        primary_id = find_primary_id(contact, contacts_by_id)
        group = groups.get(primary_id)
        if group is None:
            group = groups[primary_id] = IdentityGroup(primary=contacts_by_id[primary_id])
        if contact.id != primary_id:
            group.secondaries.append(contact)

    return sorted(groups.values(), key=lambda g: g.primary.sort_key)


def needs_secondary(group: IdentityGroup, email: Optional[str] = None,
                    phone: Optional[str] = None) -> bool:
    """True when the submission carries an email or phone the group lacks."""
    has_new_email = bool(email) and group.primary.email != email and \
        not any(c.email == email for c in group.secondaries)
    has_new_phone = bool(phone) and group.primary.phoneNumber != phone and \
        not any(c.phoneNumber == phone for c in group.secondaries)

    return has_new_email or has_new_phone


def load_identity_group(store: ContactStore, primary_id: int) -> IdentityGroup:
    primary = store.get_by_id(primary_id)
    if primary is None:
        raise ContactNotFoundError(primary_id)

    secondaries = [
        c for c in store.find_by_ids_or_linked_ids([primary_id])
        if c.id != primary_id and c.linkedId == primary_id
    ]
    secondaries.sort(key=lambda c: c.sort_key)
    return IdentityGroup(primary=primary, secondaries=secondaries)


def attach_secondary(store: ContactStore, anchor: ContactRecord, email: Optional[str] = None,
                     phone: Optional[str] = None) -> ContactRecord:
    # an anchor recovered from a broken link keeps its secondary precedence,
    # only demotion is ever written back
    if not anchor.is_primary:
        logger.warning(
            "Attaching new contact to %s, which is recorded as secondary of missing contact %s",
            anchor.id, anchor.linkedId,
        )
    contact = store.insert_secondary(anchor.id, email, phone)
    logger.info("Created secondary contact %s for identity %s", contact.id, anchor.id)
    return contact


def merge_identity_groups(store: ContactStore, groups: List[IdentityGroup],
                          email: Optional[str] = None, phone: Optional[str] = None) -> IdentityGroup:
    """Fold every group onto the one with the oldest primary."""
    groups = sorted(groups, key=lambda g: g.primary.sort_key)
    survivor, losers = groups[0], groups[1:]
    survivor_id = survivor.primary.id

    merged = IdentityGroup(primary=survivor.primary, secondaries=list(survivor.secondaries))

    for group in losers:
        logger.info("Merging identity %s into %s", group.primary.id, survivor_id)

        store.relink(group.primary.id, survivor_id, LinkPrecedence.SECONDARY)
        merged.secondaries.append(group.primary.model_copy(update={
            "linkedId": survivor_id,
            "linkPrecedence": LinkPrecedence.SECONDARY,
        }))

        # relinking the old secondaries directly keeps every chain one level deep
        for secondary in group.secondaries:
            store.relink(secondary.id, survivor_id, LinkPrecedence.SECONDARY)
            merged.secondaries.append(secondary.model_copy(update={"linkedId": survivor_id}))

    if needs_secondary(merged, email, phone):
        attach_secondary(store, survivor.primary, email, phone)

    return load_identity_group(store, survivor_id)


def consolidate(store: ContactStore, email: Optional[str] = None,
                phone: Optional[str] = None) -> IdentityGroup:
    if not email and not phone:
        raise InvalidInputError("Either email or phoneNumber must be provided")

    matches = find_matching_contacts(store, email, phone)
    groups = resolve_identity_groups(store, matches)

    if not groups:
        contact = store.insert_primary(email, phone)
        logger.info("Created primary contact %s", contact.id)
        return IdentityGroup(primary=contact)

    if len(groups) == 1:
        group = groups[0]
        if needs_secondary(group, email, phone):
            group.secondaries.append(attach_secondary(store, group.primary, email, phone))
        return group

    return merge_identity_groups(store, groups, email, phone)


def build_contact_response(group: IdentityGroup) -> ContactResponse:
    emails = []
    phone_numbers = []

    for contact in group.members:
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in phone_numbers:
            phone_numbers.append(contact.phoneNumber)

    return ContactResponse(
        primaryContactId=group.primary.id,
        emails=emails,
        phoneNumbers=phone_numbers,
        secondaryContactIds=[c.id for c in group.secondaries],
    )


def identify_contact(store: ContactStore, email: Optional[str] = None,
                     phone: Optional[str] = None) -> ContactResponse:
    return build_contact_response(consolidate(store, email, phone))
