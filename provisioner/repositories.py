import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from provisioner.models import Event, VirtualMachineRecord, now_utc


def write_event(
    session: Session, event_type: str, payload: dict, vm_id: str | None = None
) -> None:
    session.add(
        Event(
            vm_id=vm_id,
            event_type=event_type,
            payload_json=json.dumps(payload, sort_keys=True),
        )
    )


def get_owned_vm(
    session: Session, vm_id: str, owner_id: str
) -> VirtualMachineRecord | None:
    # a single predicate so foreign-owned and missing records are indistinguishable
    query = select(VirtualMachineRecord).where(
        VirtualMachineRecord.id == vm_id,
        VirtualMachineRecord.owner_id == owner_id,
    )
    return session.scalars(query).first()


def register_vm(
    session: Session, vm_id: str, owner_id: str, item_path: str
) -> VirtualMachineRecord:
    record = session.get(VirtualMachineRecord, vm_id)
    if record is None:
        record = VirtualMachineRecord(id=vm_id, owner_id=owner_id, item_path=item_path)
        session.add(record)
    else:
        record.owner_id = owner_id
        record.item_path = item_path
    return record


def mark_deployed(session: Session, vm_id: str) -> None:
    record = session.get(VirtualMachineRecord, vm_id)
    if record is not None:
        record.deployed_at = now_utc()


def list_events(session: Session, vm_id: str | None = None) -> list[Event]:
    query = select(Event)
    if vm_id:
        query = query.where(Event.vm_id == vm_id)
    return list(session.scalars(query.order_by(Event.id.asc())))
