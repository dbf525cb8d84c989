"""
Document type classifier for business loan documents.

Classifies documents by filename patterns and decides which documents are
banking statements for the risk scorer.
"""

import re
from typing import List, Optional

from .models import Document


class LoanDocClassifier:
    """
    Classifies business loan documents based on filename patterns.

    Supports common Canadian small-business lending documents:
    - Banking: bank statements, void cheques
    - Financial: tax returns, financial statements, AR/AP reports
    - Registration: articles of incorporation, GST/HST registration
    - Identity: driver's licence, passport
    """

    # Order matters - more specific patterns first
    FILENAME_PATTERNS = [
        # Banking documents
        (r'(bank[_\s-]?statement|(chequing|checking|savings)[_\s-]?statement)', 'bank_statement'),
        (r'(void[_\s-]?cheque|void[_\s-]?check|pad[_\s-]?form)', 'void_cheque'),

        # Financial documents
        (r'(t2[_\s-]?(return)?|corporate[_\s-]?tax|tax[_\s-]?return)', 'tax_return'),
        (r'(notice[_\s-]?(of[_\s-]?)?assessment|\bnoa\b)', 'notice_of_assessment'),
        (r'(financial[_\s-]?statement|balance[_\s-]?sheet|income[_\s-]?statement|p&l|profit[_\s-]?(and|&)[_\s-]?loss)', 'financial_statement'),
        (r'(accounts?[_\s-]?receivable|a/?r[_\s-]?aging)', 'accounts_receivable'),
        (r'(accounts?[_\s-]?payable|a/?p[_\s-]?aging)', 'accounts_payable'),

        # Registration documents
        (r'(articles[_\s-]?(of[_\s-]?)?incorporation|certificate[_\s-]?(of[_\s-]?)?incorporation)', 'business_registration'),
        (r'(?<![a-z])(gst|hst)(?![a-z])', 'gst_registration'),
        (r'(business[_\s-]?licen[cs]e|master[_\s-]?business)', 'business_license'),

        # Property / premises
        (r'(lease[_\s-]?agreement|commercial[_\s-]?lease)', 'lease_agreement'),
        (r'(utility[_\s-]?bill|hydro[_\s-]?bill)', 'utility_bill'),

        # Application documents
        (r'(loan[_\s-]?application|application[_\s-]?(form|summary)?)', 'application_summary'),

        # ID verification
        (r'(id[_\s-]?(verification|document)|drivers?[_\s-]?licen[cs]e|passport)', 'id_verification'),
    ]

    def __init__(self):
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), doc_type)
            for pattern, doc_type in self.FILENAME_PATTERNS
        ]

    def classify_document(self, filename: str) -> str:
        """
        Classify a loan document by its filename.

        Returns:
            Document type string (e.g., 'bank_statement', 'tax_return'), 'other' when unknown
        """
        return self._classify_by_filename(filename) or "other"

    def _classify_by_filename(self, filename: str) -> Optional[str]:
        filename_lower = filename.lower()
        for pattern, doc_type in self._compiled_patterns:
            if pattern.search(filename_lower):
                return doc_type
        return None

    def get_supported_types(self) -> List[str]:
        """Return list of all supported document types."""
        return sorted(set(doc_type for _, doc_type in self.FILENAME_PATTERNS))


def is_banking_statement(document: Document) -> bool:
    """A document is a banking statement when its type mentions a bank or its filename a statement."""
    doc_type = (document.document_type or "").lower()
    filename = (document.file_name or "").lower()
    return "bank" in doc_type or "statement" in filename


def banking_statements(documents: List[Document]) -> List[Document]:
    """Banking statements among documents, in their original order."""
    return [doc for doc in documents if is_banking_statement(doc)]
