from __future__ import annotations

import unittest

from app.validators.header_validator import HeaderErrorCode, HeaderValidator, UnrecognizedHeaderPolicy


class TestHeaderValidator(unittest.TestCase):
    def setUp(self) -> None:
        self.validator = HeaderValidator()

    def test_missing_citation_columns_report_doi_and_are_fatal(self) -> None:
        check = self.validator.check(["site", "species", "yield"])

        self.assertIn("citation_doi", check.required_missing)
        self.assertTrue(check.fatal)
        self.assertTrue(check.summary.fatal)
        self.assertEqual(check.summary.field_list_errors, ["citation_doi"])
        self.assertEqual(check.required_present, ("yield",))
        self.assertEqual(check.recognized_optional, ("site", "species"))

    def test_empty_header_list_is_fatal(self) -> None:
        check = self.validator.check([])

        self.assertTrue(check.fatal)
        self.assertIn("yield", check.required_missing)
        self.assertIn("citation_doi", check.required_missing)
        self.assertEqual(check.summary.field_list_error_count, 2)

    def test_doi_alone_identifies_the_citation(self) -> None:
        check = self.validator.check(["yield", "citation_doi", "site"])

        self.assertFalse(check.fatal)
        self.assertEqual(check.required_missing, ())
        self.assertEqual(check.column_map["citation_doi"], "citation_doi")

    def test_partial_citation_triple_reports_missing_members(self) -> None:
        check = self.validator.check(["yield", "citation_author"])

        self.assertTrue(check.fatal)
        self.assertEqual(check.required_missing, ("citation_year", "citation_title"))

    def test_linked_citation_makes_citation_columns_optional(self) -> None:
        check = self.validator.check(["yield", "site"], linked_citation=True)

        self.assertFalse(check.fatal)
        self.assertEqual(check.required_missing, ())

    def test_standard_error_requires_sample_size(self) -> None:
        check = self.validator.check(["yield", "citation_doi", "SE"])

        self.assertIn("n", check.required_missing)
        self.assertTrue(check.fatal)

    def test_header_matching_ignores_whitespace_and_se_case(self) -> None:
        check = self.validator.check([" yield ", "citation_doi", " se", "n"])

        self.assertFalse(check.fatal)
        self.assertEqual(check.column_map["yield"], " yield ")
        self.assertEqual(check.column_map["SE"], " se")

    def test_forbidden_headers_are_fatal(self) -> None:
        check = self.validator.check(["yield", "citation_doi", "id", "created_at"])

        self.assertTrue(check.fatal)
        self.assertEqual(check.forbidden, ("id", "created_at"))
        self.assertEqual(len(check.summary.errors[HeaderErrorCode.FORBIDDEN]), 2)

    def test_duplicate_headers_are_fatal(self) -> None:
        check = self.validator.check(["yield", "citation_doi", "yield"])

        self.assertTrue(check.fatal)
        self.assertEqual(check.duplicates, ("yield",))

    def test_unrecognized_headers_warn_by_default(self) -> None:
        check = self.validator.check(["yield", "citation_doi", "plot_color"])

        self.assertFalse(check.fatal)
        self.assertEqual(check.unrecognized, ("plot_color",))
        self.assertIn(HeaderErrorCode.UNRECOGNIZED, check.summary.warnings)
        self.assertNotIn(HeaderErrorCode.UNRECOGNIZED, check.summary.errors)

    def test_unrecognized_headers_can_be_fatal(self) -> None:
        validator = HeaderValidator(unrecognized_policy=UnrecognizedHeaderPolicy.FATAL)

        check = validator.check(["yield", "citation_doi", "plot_color"])

        self.assertTrue(check.fatal)
        self.assertIn(HeaderErrorCode.UNRECOGNIZED, check.summary.errors)

    def test_rejects_unknown_policy(self) -> None:
        with self.assertRaises(ValueError):
            HeaderValidator(unrecognized_policy="ignore")

    def test_check_is_pure(self) -> None:
        headers = ["yield", "site", "citation_author"]

        self.assertEqual(self.validator.check(headers), self.validator.check(headers))


if __name__ == "__main__":
    unittest.main()
