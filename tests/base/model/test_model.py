# tests/base/model/test_model.py

import re

import pytest

from async_orm.base.exceptions import SchemaDefinitionError
from async_orm.base.fields import (
    AutoSerial,
    ForeignKey,
    Integer,
    RelatedField,
    Text,
    Varchar,
)
from async_orm.base.model import Model, ModelSchema
from async_orm.base.query import QueryBuilder


def pk():
    return AutoSerial(primary_key=True, nullable=False)


# =============================================================================
# Declaration
# =============================================================================


def test_define_builds_frozen_schema():
    person = Model.define("Person", {"id": pk(), "name": Text()})

    assert person.name == "Person"
    assert isinstance(person.schema, ModelSchema)
    assert person.schema.table_name == "person"
    assert list(person.schema.fields) == ["id", "name"]
    assert person.schema.get_primary_key() is person.schema.fields["id"]


def test_define_uses_db_name_for_table():
    person = Model.define("Person", {"id": pk()}, db_name="people")
    assert person.schema.table_name == "people"


@pytest.mark.parametrize("name", ["", None, 3])
def test_define_requires_model_name(name):
    with pytest.raises(SchemaDefinitionError, match="model name not provided"):
        Model.define(name, {"id": pk()})


def test_define_requires_string_db_name():
    with pytest.raises(SchemaDefinitionError, match="db_name must be a non-empty string"):
        Model.define("Person", {"id": pk()}, db_name=5)


def test_define_requires_fields():
    with pytest.raises(SchemaDefinitionError, match="'Person' DB Model Validation: no Fields provided"):
        Model.define("Person", {})


def test_define_requires_mapping():
    with pytest.raises(SchemaDefinitionError, match="'fields' must be a mapping"):
        Model.define("Person", [pk()])


def test_define_rejects_non_field_values():
    with pytest.raises(SchemaDefinitionError, match="'name' Field has unknown type: str"):
        Model.define("Person", {"id": pk(), "name": "text"})


def test_define_requires_primary_key():
    with pytest.raises(SchemaDefinitionError, match="'Person' DB Model Validation: does not have a primary key"):
        Model.define("Person", {"name": Text()})


def test_define_rejects_two_primary_keys():
    with pytest.raises(SchemaDefinitionError, match="contains more than one primary key"):
        Model.define("Person", {
            "id": pk(),
            "code": Integer(primary_key=True, nullable=False),
        })


def test_failed_define_releases_its_fields():
    name = Varchar(max_size=32)
    with pytest.raises(SchemaDefinitionError, match="does not have a primary key"):
        Model.define("Person", {"name": name})

    assert not name.is_bound
    person = Model.define("Person", {"id": pk(), "name": name})
    assert person.schema.get_field_by_name("name") is name
    assert name.owner is person


def test_failed_relation_registration_releases_its_fields():
    parent = Model.define("Parent", {"id": pk(), "child": Text()})
    link = ForeignKey(model=parent, reverse_name="child")
    with pytest.raises(SchemaDefinitionError, match="collides with a field"):
        Model.define("Child", {"id": pk(), "parent": link})

    assert not link.is_bound
    assert link.reverse_name == "child"
    with pytest.raises(SchemaDefinitionError, match="is not bound to a model"):
        link.to_table_sql()


def test_define_rejects_duplicate_column_names():
    with pytest.raises(SchemaDefinitionError, match="column 'name' is used by both 'name' and 'alias'"):
        Model.define("Person", {
            "id": pk(),
            "name": Text(),
            "alias": Text(db_name="name"),
        })


# =============================================================================
# Read-only schema
# =============================================================================


def test_schema_attributes_are_read_only():
    person = Model.define("Person", {"id": pk()})
    with pytest.raises(AttributeError, match="read-only"):
        person.schema.table_name = "other"


def test_schema_fields_mapping_is_read_only():
    person = Model.define("Person", {"id": pk()})
    with pytest.raises(TypeError):
        person.schema.fields["name"] = Text()


def test_model_attributes_are_read_only():
    person = Model.define("Person", {"id": pk()})
    with pytest.raises(AttributeError, match="read-only"):
        person.name = "Other"


def test_declared_mapping_changes_do_not_leak():
    fields = {"id": pk(), "name": Text()}
    person = Model.define("Person", fields)
    fields["extra"] = Text()
    assert "extra" not in person.schema.fields


# =============================================================================
# Lookups
# =============================================================================


def test_lookups(models):
    order = models.Order.schema
    customer_fk = order.fields["customer"]

    assert order.get_field_by_name("customer") is customer_fk
    assert order.get_field_by_name("customer_id") is customer_fk
    assert order.get_field_by_name("order_items") is order.get_related_field("order_items")
    assert order.get_field_by_name("order_items", include_related=False) is None
    assert order.get_field_by_name("missing") is None


def test_field_names_include_columns_and_relations(models):
    assert models.Order.schema.get_field_names() == [
        "id", "customer", "is_paid", "created", "customer_id", "order_items",
    ]


def test_db_field_names(models):
    assert models.Order.schema.get_db_field_names() == [
        "id", "customer_id", "is_paid", "created",
    ]


def test_query_returns_fresh_builder(models):
    first = models.Customer.query
    second = models.Customer.query
    assert isinstance(first, QueryBuilder)
    assert first is not second
    assert first.model is models.Customer


# =============================================================================
# Relations
# =============================================================================


def test_reverse_relation_is_registered_on_target(models):
    related = models.Customer.schema.get_related_field("order")

    assert isinstance(related, RelatedField)
    assert related.owner is models.Customer
    assert related.related_model is models.Order
    assert related.foreign_key is models.Order.schema.fields["customer"]


def test_self_reference_registers_on_itself(models):
    related = models.Employee.schema.get_related_field("reports")
    assert related.related_model is models.Employee
    assert related.owner is models.Employee


def test_reverse_name_conflict_names_first_registrant():
    parent = Model.define("Parent", {"id": pk()})
    Model.define("Child1", {"id": pk(), "parent": ForeignKey(model=parent, reverse_name="child")})

    expected = (
        "Child2 Model Field Validation Error: reverse name 'child' already "
        "exists on model 'Parent' (from Child1 Model)"
    )
    with pytest.raises(SchemaDefinitionError, match=re.escape(expected)):
        Model.define("Child2", {"id": pk(), "parent": ForeignKey(model=parent, reverse_name="child")})


def test_reverse_name_conflict_within_one_model():
    parent = Model.define("Parent", {"id": pk()})
    with pytest.raises(SchemaDefinitionError, match="reverse name 'link' already exists"):
        Model.define("Child", {
            "id": pk(),
            "first": ForeignKey(model=parent, reverse_name="link"),
            "second": ForeignKey(model=parent, reverse_name="link"),
        })
    # nothing was registered by the failed declaration
    assert parent.schema.get_related_field("link") is None


def test_reverse_name_cannot_shadow_target_field():
    parent = Model.define("Parent", {"id": pk(), "child": Text()})
    with pytest.raises(SchemaDefinitionError, match="collides with a field of model 'Parent'"):
        Model.define("Child", {"id": pk(), "parent": ForeignKey(model=parent)})


def test_two_foreign_keys_to_one_model():
    user = Model.define("User", {"id": pk(), "name": Text()})
    message = Model.define("Message", {
        "id": pk(),
        "sender": ForeignKey(model=user, reverse_name="sent"),
        "recipient": ForeignKey(model=user, reverse_name="received"),
    })
    assert user.schema.get_related_field("sent").foreign_key is message.schema.fields["sender"]
    assert user.schema.get_related_field("received").foreign_key is message.schema.fields["recipient"]


# =============================================================================
# DDL
# =============================================================================


def test_generate_table_sql(models):
    assert models.Customer.schema.generate_table_sql() == (
        'CREATE TABLE "customer" (\n'
        '  "id" bigserial NOT NULL PRIMARY KEY, \n'
        '  "first" varchar(64) NOT NULL, \n'
        '  "last" varchar(64), \n'
        '  "email" citext UNIQUE, \n'
        '  "active" boolean NOT NULL DEFAULT TRUE\n'
        ");"
    )


def test_generate_table_sql_with_foreign_key(models):
    assert models.Order.schema.generate_table_sql() == (
        'CREATE TABLE "order" (\n'
        '  "id" bigserial NOT NULL PRIMARY KEY, \n'
        '  "customer_id" bigint REFERENCES "customer" ON DELETE CASCADE NOT NULL, \n'
        '  "is_paid" boolean NOT NULL DEFAULT FALSE, \n'
        "  \"created\" TIMESTAMP WITH TIME ZONE DEFAULT (now() at time zone 'UTC')\n"
        ");"
    )


# =============================================================================
# Extend
# =============================================================================


def test_extend_clones_fields():
    person = Model.define("Person", {"id": pk(), "name": Varchar(max_size=20)})
    staff = person.extend("Staff", {"title": Text()})

    assert list(staff.schema.fields) == ["id", "name", "title"]
    assert staff.schema.table_name == "staff"
    assert staff.schema.fields["name"] is not person.schema.fields["name"]
    assert staff.schema.fields["name"].owner is staff
    assert person.schema.fields["name"].owner is person
    assert "title" not in person.schema.fields


def test_extend_overrides_fields():
    person = Model.define("Person", {"id": pk(), "name": Varchar(max_size=20)})
    staff = person.extend("Staff", {"name": Varchar(max_size=40)}, db_name="staff_members")

    assert staff.schema.fields["name"].type_to_sql() == "varchar(40)"
    assert staff.schema.table_name == "staff_members"


def test_extend_tracks_ancestry():
    person = Model.define("Person", {"id": pk()})
    staff = person.extend("Staff")
    manager = staff.extend("Manager")

    assert manager.is_derived_from(person)
    assert manager.is_derived_from(staff)
    assert not person.is_derived_from(staff)


def test_extend_registers_its_own_relations():
    team = Model.define("Team", {"id": pk()})
    person = Model.define("Person", {"id": pk(), "team": ForeignKey(model=team, reverse_name="people")})
    person.extend("Staff", {"team": ForeignKey(model=team, reverse_name="staff")})

    assert team.schema.get_related_field("people").related_model is person
    assert team.schema.get_related_field("staff").related_model.name == "Staff"
