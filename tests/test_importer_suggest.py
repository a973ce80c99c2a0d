from casebook.importer.adapters import Row
from casebook.importer.mapping import get_field_catalogue
from casebook.importer.pipeline.suggest import analyze_columns, infer_type, normalize_token, suggest_mappings


def _rows(columns, *values):
    return [Row.from_values(columns, row) for row in values]


def _by_column(suggestions):
    return {suggestion.source_column: suggestion for suggestion in suggestions}


def test_normalize_token_is_case_and_punctuation_insensitive():
    assert normalize_token("  First-Name ") == "first_name"
    assert normalize_token("E-Mail Address") == "e_mail_address"
    assert normalize_token("Zip/Postal") == "zip_postal"


def test_infer_type_classifies_common_shapes():
    assert infer_type(["alice@example.com", "bea@example.com"]) == "email"
    assert infer_type(["(555) 201-0001", "555.201.0002"]) == "phone"
    assert infer_type(["1990-05-17", "5/17/1990"]) == "date"
    assert infer_type(["123-45-6789"]) == "ssn"
    assert infer_type(["yes", "no"]) == "boolean"
    assert infer_type(["12", "3.5"]) == "number"
    assert infer_type(["Alice", "5552010001"]) == "string"
    assert infer_type([]) == "string"


def test_analyze_columns_counts_samples():
    columns = ["Name", "Zip"]
    analysis = analyze_columns(columns, _rows(columns, ["Alice", "64101"], ["Bea", None], ["Carl", "64105-1234"]))

    assert analysis["Name"].unique_count == 3
    assert analysis["Zip"].null_count == 1
    assert analysis["Zip"].zip_like is True
    assert analysis["Zip"].to_dict()["sample_values"] == ["64101", "64105-1234"]


def test_suggests_targets_from_column_names_and_shapes(app):
    columns = ["First Name", "Surname", "Mobile", "E-mail", "DOB", "Postal Code", "Favourite Colour"]
    rows = _rows(
        columns,
        ["Alice", "Smith", "555-201-0001", "alice@example.com", "1990-05-17", "64101", "blue"],
        ["Bea", "Jones", "555-201-0002", "bea@example.com", "1985-01-02", "64105", "green"],
    )

    suggestions = suggest_mappings(columns, rows, get_field_catalogue())
    by_column = _by_column(suggestions)

    assert [suggestion.source_column for suggestion in suggestions] == columns[:-1]
    assert by_column["First Name"].target_field == "client.firstName"
    assert by_column["Surname"].target_field == "client.lastName"
    assert by_column["Mobile"].target_field == "client.phone"
    assert by_column["Mobile"].confidence == 1.0
    assert "values match the field type" in by_column["Mobile"].reason
    assert by_column["E-mail"].target_field == "client.email"
    assert by_column["DOB"].target_field == "client.dateOfBirth"
    assert by_column["Postal Code"].target_field == "client.address.zip"
    assert "Favourite Colour" not in by_column


def test_name_alias_maps_to_full_name(app):
    columns = ["Name", "Phone"]
    rows = _rows(columns, ["Alice Smith", "555-201-0001"])

    by_column = _by_column(suggest_mappings(columns, rows, get_field_catalogue()))

    assert by_column["Name"].target_field == "client.fullName"
    assert by_column["Name"].confidence == 0.9


def test_ambiguous_contact_column_is_resolved_by_value_shape(app):
    catalogue = get_field_catalogue()
    phone_rows = _rows(["Name", "Contact"], ["Alice Smith", "(555) 201-0001"], ["Bea Jones", "555-201-0002"])
    email_rows = _rows(["Name", "Contact"], ["Alice Smith", "alice@example.com"], ["Bea Jones", "bea@example.com"])

    as_phone = _by_column(suggest_mappings(["Name", "Contact"], phone_rows, catalogue))
    as_email = _by_column(suggest_mappings(["Name", "Contact"], email_rows, catalogue))

    assert as_phone["Contact"].target_field == "client.phone"
    assert as_phone["Contact"].confidence == 0.5
    assert as_phone["Contact"].reason == "values look like phone"
    assert as_email["Contact"].target_field == "client.email"


def test_ambiguous_column_with_unrecognised_values_is_omitted(app):
    columns = ["Name", "Info"]
    rows = _rows(columns, ["Alice Smith", "prefers mornings"])

    by_column = _by_column(suggest_mappings(columns, rows, get_field_catalogue()))

    assert "Info" not in by_column


def test_each_target_is_suggested_once(app):
    columns = ["Phone", "Cell Phone"]
    rows = _rows(columns, ["555-201-0001", "555-201-0002"])

    suggestions = suggest_mappings(columns, rows, get_field_catalogue())

    assert [suggestion.target_field for suggestion in suggestions] == ["client.phone"]
    assert suggestions[0].source_column == "Phone"
    assert suggestions[0].to_dict()["sample_values"] == ["555-201-0001"]
