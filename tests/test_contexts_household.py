from trisplit.contexts import build_contexts, split_full_name
from trisplit.household import HouseholdResolver
from trisplit.mapping import MappingResolver
from trisplit.models import ContactContext, Profile, PropertySnapshot
from trisplit.normalization import core_address_matches


def _m(source, target, association="", object_type="Contact", group=""):
    return {
        "sourceColumn": source,
        "targetProperty": target,
        "associationLabel": association,
        "objectType": object_type,
        "propertyGroup": group,
    }


def _resolver(*mappings, **extra):
    payload = {"mappings": list(mappings)}
    payload.update(extra)
    return MappingResolver(Profile.from_mapping(payload))


MAILING_MAPPINGS = [
    _m("Mail Address", "Address", "Mailing Address", "Property"),
    _m("Mail City", "City", "Mailing Address", "Property"),
    _m("Mail State", "State", "Mailing Address", "Property"),
    _m("Mail Zip", "Zip", "Mailing Address", "Property"),
]


def test_split_full_name():
    assert split_full_name("Mary Ann Smith") == ("Mary Ann", "Smith")
    assert split_full_name("Cher") == ("Cher", "")
    assert split_full_name("Smith Holdings LLC") == ("Smith Holdings LLC", "")


def test_one_association_splits_into_two_people():
    resolver = _resolver(
        _m("Owner First 1", "First Name", "Owner"),
        _m("Owner Last 1", "Last Name", "Owner"),
        _m("Owner First 2", "First Name", "Owner"),
        _m("Owner Last 2", "Last Name", "Owner"),
    )
    row = {
        "Owner First 1": "ALICE",
        "Owner Last 1": "BAKER",
        "Owner First 2": "carl",
        "Owner Last 2": "dunn",
    }
    contexts = build_contexts(row, resolver)
    assert [(c.first_name, c.last_name) for c in contexts] == [("Alice", "Baker"), ("Carl", "Dunn")]
    assert [c.owner_index for c in contexts] == [1, 2]


def test_blank_values_never_create_contexts():
    resolver = _resolver(
        _m("First", "First Name"),
        _m("Last", "Last Name"),
        _m("First 2", "First Name"),
        _m("Last 2", "Last Name"),
    )
    contexts = build_contexts({"First": "Ann", "Last": "Lee", "First 2": "", "Last 2": " "}, resolver)
    assert len(contexts) == 1
    assert build_contexts({"First": "", "Last": ""}, resolver) == []


def test_email_and_company_fill_first_missing_slot():
    resolver = _resolver(
        _m("First", "First Name"),
        _m("Last", "Last Name"),
        _m("Email 1", "Email"),
        _m("Email 2", "Email"),
        _m("Email 3", "Email"),
        _m("Age", "Age"),
    )
    row = {
        "First": "Ann",
        "Last": "Lee",
        "Email 1": "ann@example.com",
        "Email 2": "other@example.com",
        "Email 3": "",
        "Age": "41",
    }
    (context,) = build_contexts(row, resolver)
    assert context.email == "ann@example.com"
    assert context.additional_fields == {"Email": "other@example.com", "Age": "41"}


def test_corporate_full_name_is_not_split():
    resolver = _resolver(_m("Owner Name", "Owner Name"))
    (context,) = build_contexts({"Owner Name": "Smith Holdings LLC"}, resolver)
    assert context.first_name == "Smith Holdings LLC"
    assert context.last_name == ""


def test_surname_that_is_also_an_entity_word_is_split():
    resolver = _resolver(_m("Owner Name", "Owner Name"))
    (context,) = build_contexts({"Owner Name": "JOHN BANK"}, resolver)
    assert (context.first_name, context.last_name) == ("John", "Bank")
    assert split_full_name("Lee Family Trust") == ("Lee Family Trust", "")


def test_contact_context_computed_properties():
    context = ContactContext(
        association="Owner", first_name="Ann", property=PropertySnapshot(address="1 Elm St")
    )
    assert context.has_identity is True
    assert context.display_name == "Ann"
    assert context.property.address == "1 Elm St"
    assert ContactContext(association="Relative", company="Acme Inc").display_name == "Acme Inc"
    blank = ContactContext(association="Relative")
    assert blank.has_identity is False
    assert blank.display_name == "Relative"


def test_property_falls_back_to_group_with_core_address():
    resolver = _resolver(
        _m("First", "First Name"),
        _m("Notes", "Parcel Notes", object_type="Property"),
        _m("Lot Address", "Address", object_type="Property", group="Lot"),
        _m("Lot Zip", "Zip", object_type="Property", group="Lot"),
    )
    row = {"First": "Ann", "Notes": "corner", "Lot Address": "9 elm st", "Lot Zip": "02134"}
    (context,) = build_contexts(row, resolver)
    assert set(context.property_groups) == {"", "Lot"}
    assert context.property.address == "9 Elm St"
    assert context.property.property_group == "Lot"


def test_mailing_group_supplies_own_mailing():
    resolver = _resolver(
        _m("First", "First Name"),
        _m("Addr", "Address", object_type="Property"),
        _m("Mail Addr", "Address", object_type="Property", group="Owner Mailing"),
    )
    row = {"First": "Ann", "Addr": "1 A St", "Mail Addr": "2 B St"}
    (context,) = build_contexts(row, resolver)
    assert context.property.address == "1 A St"
    assert context.mailing.address == "2 B St"
    assert context.mailing_inherited is False
    assert "Owner Mailing" not in context.property_groups


def _household_row():
    resolver = _resolver(
        _m("First", "First Name", "Owner"),
        _m("Last", "Last Name", "Owner"),
        _m("Rel First", "First Name", "Relative"),
        _m("Rel Last", "Last Name", "Relative"),
        _m("Assoc First", "First Name", "Associate"),
        _m("Assoc Last", "Last Name", "Associate"),
        _m("Addr", "Address", object_type="Property"),
        _m("Zip", "Zip", object_type="Property"),
        *MAILING_MAPPINGS,
    )
    row = {
        "First": "John",
        "Last": "Smith",
        "Rel First": "Jane",
        "Rel Last": "smith",
        "Assoc First": "Bob",
        "Assoc Last": "Jones",
        "Addr": "100 Main St",
        "Zip": "78701",
        "Mail Address": "PO Box 5",
        "Mail City": "Austin",
        "Mail State": "TX",
        "Mail Zip": "78767",
    }
    return resolver, row


def test_mailing_inheritance_and_fallback():
    resolver, row = _household_row()
    contexts = build_contexts(row, resolver)
    household = HouseholdResolver(resolver, secondary_mode=False)
    primary = household.resolve(row, contexts)
    owner, relative, associate = contexts

    assert primary is owner
    assert owner.is_primary and not relative.is_primary
    assert owner.mailing.address == "PO Box 5"
    assert core_address_matches(relative.mailing, owner.mailing)
    assert relative.mailing_inherited is True
    assert associate.mailing.address == "100 Main St"
    assert associate.mailing.additional_fields == {}

    assert relative.shares_mailing_with_primary is True
    assert associate.shares_mailing_with_primary is False
    assert not any(c.is_secondary for c in contexts)


def test_linking_requires_secondary_mode():
    resolver, row = _household_row()
    for secondary_mode in (False, True):
        contexts = build_contexts(row, resolver)
        household = HouseholdResolver(resolver, secondary_mode=secondary_mode)
        household.resolve(row, contexts)
        for index, context in enumerate(contexts):
            context.import_id = f"id-{index}"
        household.link(contexts)
        owner, relative, associate = contexts
        assert owner.linked_contact_id is None
        if secondary_mode:
            assert relative.is_secondary and associate.is_secondary
            assert relative.linked_contact_id == "id-0"
            assert associate.linked_contact_id == "id-0"
        else:
            assert all(c.linked_contact_id is None for c in contexts)


def test_primary_selection_order():
    resolver = _resolver(_m("First", "First Name"))
    household = HouseholdResolver(resolver)
    co_owner = ContactContext(association="Co-Owner", first_name="A")
    owner_one = ContactContext(association="Owner 1", first_name="B")
    mailing = ContactContext(association="Mailing Address", first_name="C")
    tenant = ContactContext(association="Tenant", first_name="D")

    assert household.select_primary([co_owner, owner_one, mailing]) is owner_one
    assert household.select_primary([tenant, mailing]) is mailing
    assert household.select_primary([tenant, co_owner]) is tenant
    assert household.select_primary([]) is None


def test_own_mailing_matching_primary_property_counts_as_shared():
    resolver = _resolver(_m("First", "First Name"))
    household = HouseholdResolver(resolver)
    home = PropertySnapshot(address="100 Main St", zip="78701")
    primary = ContactContext(association="Owner", first_name="John", last_name="Smith", property=home)
    sibling = ContactContext(
        association="Relative",
        first_name="Amy",
        last_name="Smith",
        mailing=PropertySnapshot(address="100 main street"),
    )
    household.resolve({}, [primary, sibling])
    assert sibling.shares_mailing_with_primary is True
    assert primary.shares_mailing_with_primary is False
