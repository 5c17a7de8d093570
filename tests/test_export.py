from trisplit.export import (
    CONTACTS,
    LINKED_CONTACT_ID,
    PHONES,
    PRIMARY,
    PROPERTIES,
    SECONDARY,
    ExportAssembler,
)
from trisplit.identity import PersistenceEngine
from trisplit.models import ContactContext, Profile, PropertySnapshot


def _engine():
    return PersistenceEngine(Profile.from_mapping({"data_source": "County"}))


def _persist(engine, **fields):
    context = ContactContext(**fields)
    engine.assign_import_id(context)
    engine.persist_contact(context)
    return context


def test_contacts_sorted_by_last_then_first_name():
    engine = _engine()
    _persist(engine, association="Owner", first_name="Zed", last_name="Adams")
    _persist(engine, association="Owner", first_name="Amy", last_name="Young")
    _persist(engine, association="Owner", first_name="Al", last_name="adams")

    sets = ExportAssembler(engine).contacts()
    names = [(row["First Name"], row["Last Name"]) for row in sets[PRIMARY].rows]
    assert names == [("Al", "adams"), ("Zed", "Adams"), ("Amy", "Young")]
    assert sets[PRIMARY].rows[0]["Data Source"] == "County"
    assert len(sets[SECONDARY]) == 0


def test_linked_column_only_when_populated():
    engine = _engine()
    owner = _persist(engine, association="Owner", first_name="John", last_name="Smith")
    sets = ExportAssembler(engine).contacts()
    assert LINKED_CONTACT_ID not in sets[PRIMARY].columns

    _persist(
        engine,
        association="Relative",
        first_name="Jane",
        last_name="Smith",
        linked_contact_id=owner.import_id,
    )
    sets = ExportAssembler(engine).contacts()
    assert LINKED_CONTACT_ID in sets[PRIMARY].columns


def test_secondary_records_partition_only_in_secondary_mode():
    engine = _engine()
    owner = _persist(engine, association="Owner", first_name="John", last_name="Smith")
    relative = _persist(
        engine,
        association="Relative",
        first_name="Jane",
        last_name="Doe",
        is_secondary=True,
        linked_contact_id=owner.import_id,
    )
    engine.persist_property_snapshot(
        relative.import_id, PropertySnapshot(address="9 Elm St"), "Relative", is_secondary=True
    )

    flat = ExportAssembler(engine, secondary_mode=False).assemble()
    assert len(flat[CONTACTS][PRIMARY]) == 2
    assert len(flat[CONTACTS][SECONDARY]) == 0

    split = ExportAssembler(engine, secondary_mode=True).assemble()
    assert [row["First Name"] for row in split[CONTACTS][SECONDARY].rows] == ["Jane"]
    assert [row["First Name"] for row in split[CONTACTS][PRIMARY].rows] == ["John"]
    assert len(split[PROPERTIES][SECONDARY]) == 1
    assert LINKED_CONTACT_ID in split[CONTACTS][SECONDARY].columns
    assert LINKED_CONTACT_ID not in split[CONTACTS][PRIMARY].columns


def test_extra_columns_follow_first_appearance():
    engine = _engine()
    _persist(
        engine,
        association="Owner",
        first_name="John",
        additional_fields={"Middle Name": "Q", "Age": "40"},
    )
    _persist(engine, association="Owner", first_name="Ann", additional_fields={"Nickname": "Annie"})

    columns = ExportAssembler(engine).contacts()[PRIMARY].columns
    assert columns[-3:] == ["Middle Name", "Age", "Nickname"]


def test_phones_keep_insertion_order_per_contact_and_properties_sort_by_address():
    engine = _engine()
    owner = ContactContext(association="Owner", first_name="Ann", import_id="b-id")
    other = ContactContext(association="Owner", first_name="Bo", import_id="a-id")
    engine.persist_phone(owner, "5125550002", {"Phone Type": "Mobile"})
    engine.persist_phone(owner, "5125550001", {})
    engine.persist_phone(other, "5125550003", {})
    engine.persist_property_snapshot("b-id", PropertySnapshot(address="9 Oak St"), "Owner")
    engine.persist_property_snapshot("a-id", PropertySnapshot(address="1 Elm St"), "Owner")

    assembler = ExportAssembler(engine)
    phones = assembler.phones()[PRIMARY]
    assert [row["Phone Number"] for row in phones.rows] == [
        "(512) 555-0003",
        "(512) 555-0002",
        "(512) 555-0001",
    ]
    assert phones.columns[-1] == "Phone Type"
    assert phones.rows[2].get("Phone Type") is None

    properties = assembler.properties()[PRIMARY]
    assert [row["Address"] for row in properties.rows] == ["1 Elm St", "9 Oak St"]
    assert "Postal Code" in properties.columns

    counts = assembler.record_counts()
    assert counts[PHONES] == {PRIMARY: 3, SECONDARY: 0}
    sets = assembler.assemble()
    assert assembler.record_counts(sets) == counts
    assert counts[PROPERTIES] == {PRIMARY: 2, SECONDARY: 0}
