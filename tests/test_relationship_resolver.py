import pytest

from crud6.core.exceptions import RecordNotFound, RelationshipConfigurationError
from crud6.core.schemas.fields import (
    ManyToManySpec,
    OneToManySpec,
    ThroughSpec,
    infer_relationship_type,
    parse_relationship,
)
from crud6.core.services.relationship_resolver import (
    ManyToManyRelation,
    OneToManyRelation,
    RelationshipResolver,
    ThroughRelation,
    find_relationship,
)


def compile_sql(stmt) -> str:
    return " ".join(str(stmt.compile(compile_kwargs={"literal_binds": True})).split())


@pytest.fixture
def resolver():
    return RelationshipResolver()


@pytest.fixture
def users_schema(schema_service):
    return schema_service.get_schema("users")


@pytest.fixture
def load_model(schema_service):
    return schema_service.get_model


def test_many_to_many_targets_declared_table(resolver, users_schema, load_model):
    relation = resolver.resolve_by_name(users_schema, "roles", load_model("users"), 2, load_model)

    assert isinstance(relation, ManyToManyRelation)
    sql = compile_sql(relation.query())
    assert "FROM roles JOIN role_users ON role_users.role_id = roles.id" in sql
    assert "WHERE role_users.user_id = 2" in sql


def test_through_relation_joins_both_pivots(resolver, users_schema, load_model):
    relation = resolver.resolve_by_name(users_schema, "permissions", load_model("users"), 2, load_model)

    assert isinstance(relation, ThroughRelation)
    sql = compile_sql(relation.query())
    assert sql.startswith("SELECT DISTINCT permissions.id")
    assert "permission_roles AS second_pivot ON second_pivot.permission_id = permissions.id" in sql
    assert "JOIN roles ON roles.id = second_pivot.role_id" in sql
    assert "role_users AS first_pivot ON first_pivot.role_id = roles.id" in sql
    assert "WHERE first_pivot.user_id = 2" in sql


def test_through_relation_applies_soft_delete_scopes(resolver, load_model):
    spec = ThroughSpec(
        name="products",
        through="categories",
        first_pivot_table="category_suppliers",
        first_foreign_key="supplier_id",
        first_related_key="category_id",
        second_pivot_table="category_products",
        second_foreign_key="category_id",
        second_related_key="product_id",
    )
    relation = resolver.resolve(load_model("users"), 1, spec, load_model("products"), load_model("categories"))

    assert "categories.deleted_at IS NULL" in compile_sql(relation.query())


def test_one_to_many_detail_from_foreign_key(resolver, users_schema, load_model):
    relation = resolver.resolve_by_name(users_schema, "activities", load_model("users"), 2, load_model)

    assert isinstance(relation, OneToManyRelation)
    assert relation.selected_columns() == ["id", "occurred_at", "type", "description"]
    sql = compile_sql(relation.query())
    assert "FROM activities" in sql
    assert "WHERE activities.user_id = 2" in sql


def test_one_to_many_rejects_unknown_foreign_key(resolver, load_model):
    spec = OneToManySpec(name="activities", foreign_key="owner_id")
    with pytest.raises(RelationshipConfigurationError):
        resolver.resolve(load_model("users"), 1, spec, load_model("activities"))


def test_undeclared_relationship_is_not_found(resolver, users_schema, load_model):
    with pytest.raises(RecordNotFound):
        resolver.resolve_by_name(users_schema, "groups", load_model("users"), 1, load_model)


def test_detail_without_foreign_key_uses_relationship(resolver, users_schema, load_model):
    relation = resolver.resolve_by_name(users_schema, "roles", load_model("users"), 1, load_model)
    assert relation.related.name == "roles"


def test_detail_without_foreign_key_or_relationship_is_misconfigured(resolver, users_schema, load_model):
    schema = dict(users_schema, relationships=[])
    with pytest.raises(RelationshipConfigurationError):
        resolver.resolve_by_name(schema, "roles", load_model("users"), 1, load_model)


@pytest.mark.parametrize("related", [None, {"table": "roles"}, "roles", object])
def test_unconfigured_related_model_is_rejected(resolver, load_model, related):
    spec = ManyToManySpec(name="roles", pivot_table="role_users", foreign_key="user_id", related_key="role_id")
    with pytest.raises(RelationshipConfigurationError):
        resolver.resolve(load_model("users"), 1, spec, related)


def test_through_requires_through_model(resolver, users_schema, load_model):
    spec = find_relationship(users_schema, "permissions")
    with pytest.raises(RelationshipConfigurationError):
        resolver.resolve(load_model("users"), 1, spec, load_model("permissions"))


def test_related_model_without_schema_is_misconfigured(resolver, load_model):
    schema = {
        "model": "users",
        "relationships": [
            {"name": "groups", "pivot_table": "group_users", "foreign_key": "user_id", "related_key": "group_id"}
        ],
    }
    with pytest.raises(RelationshipConfigurationError):
        resolver.resolve_by_name(schema, "groups", load_model("users"), 1, load_model)


async def test_one_to_many_relation_cannot_attach(resolver, load_model):
    relation = resolver.resolve(
        load_model("users"), 1, OneToManySpec(name="activities", foreign_key="user_id"), load_model("activities")
    )
    with pytest.raises(RelationshipConfigurationError):
        await relation.attach(None, [1])


@pytest.mark.parametrize(
    "config, expected",
    [
        ({"type": "many_to_many"}, "many_to_many"),
        ({"through": "roles"}, "belongs_to_many_through"),
        ({"pivot_table": "role_users"}, "many_to_many"),
        ({"foreign_key": "user_id"}, "one_to_many"),
        ({}, "many_to_many"),
    ],
)
def test_infer_relationship_type(config, expected):
    assert infer_relationship_type(config) == expected


def test_parse_relationship_rejects_incomplete_config():
    with pytest.raises(RelationshipConfigurationError):
        parse_relationship({"name": "roles", "type": "many_to_many", "pivot_table": "role_users"})


def test_parse_relationship_reads_event_actions(users_schema):
    spec = find_relationship(users_schema, "roles")

    assert spec.actions["on_create"].attach[0].related_id == 1
    assert spec.actions["on_update"].sync == "role_ids"
    assert spec.actions["on_delete"].detach == "all"


class TestPivotMutations:
    @pytest.fixture
    def relation(self, resolver, users_schema, load_model):
        return resolver.resolve_by_name(users_schema, "roles", load_model("users"), 2, load_model)

    async def test_get_results(self, relation, databases):
        async with databases.get_session() as session:
            rows = await relation.get_results(session)
        assert sorted(row["name"] for row in rows) == ["Editor", "Viewer"]

    async def test_attach_skips_linked_ids(self, relation, databases, query_db):
        async with databases.get_session() as session:
            async with session.begin():
                attached = await relation.attach(session, [2, 1])

        assert attached == [1]
        assert sorted(query_db("SELECT role_id FROM role_users WHERE user_id = 2")) == [(1,), (2,), (3,)]

    async def test_detach_given_ids(self, relation, databases, query_db):
        async with databases.get_session() as session:
            async with session.begin():
                removed = await relation.detach(session, [3])

        assert removed == 1
        assert query_db("SELECT role_id FROM role_users WHERE user_id = 2") == [(2,)]

    async def test_sync(self, relation, databases, query_db):
        async with databases.get_session() as session:
            async with session.begin():
                result = await relation.sync(session, [3, 1])

        assert result == {"attached": [1], "detached": [2]}
        assert sorted(query_db("SELECT role_id FROM role_users WHERE user_id = 2")) == [(1,), (3,)]

    async def test_through_results_are_distinct(self, resolver, users_schema, load_model, databases):
        relation = resolver.resolve_by_name(users_schema, "permissions", load_model("users"), 2, load_model)
        async with databases.get_session() as session:
            rows = await relation.get_results(session)
        assert sorted(row["slug"] for row in rows) == ["create_user", "uri_users"]
