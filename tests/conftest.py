"""
Pytest Configuration and Shared Fixtures
SQLite-backed database, tenant repository, Flask client and sample feeds
"""

import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

TEST_TENANT_ID = 'test-tenant'
MARCH_2024 = {'start': '2024-03-01', 'end': '2024-03-31'}


@pytest.fixture
def db_manager(tmp_path):
    """
    Provide a DatabaseManager on a throwaway SQLite file with the schema created
    """
    from backoffice.database import DatabaseManager

    manager = DatabaseManager(db_type='sqlite', sqlite_path=str(tmp_path / 'reconciliation_test.db'))
    manager.init_database()
    yield manager


@pytest.fixture
def matching_config():
    """Default tunables, independent of the environment"""
    from backoffice.config import MatchingConfig

    return MatchingConfig()


@pytest.fixture
def repository(db_manager):
    from backoffice.services.ledger_repository import ReconciliationRepository

    return ReconciliationRepository(db_manager, TEST_TENANT_ID)


@pytest.fixture
def flask_app(db_manager, matching_config):
    """
    Provide Flask app instance for API testing
    Wired to the test database
    """
    from backoffice.app import create_app

    app = create_app(db_manager=db_manager, matching_config=matching_config)
    app.config['TESTING'] = True
    app.config['DEBUG'] = False

    yield app


@pytest.fixture
def api_client(flask_app):
    """
    Provide Flask test client for API endpoint testing
    """
    with flask_app.test_client() as client:
        yield client


@pytest.fixture
def tenant_headers():
    return {'X-Tenant-ID': TEST_TENANT_ID}


@pytest.fixture
def date_range():
    return dict(MARCH_2024)


@pytest.fixture
def sample_daily_sales():
    """
    Two days of sales sheets:
    - 2024-03-05: a cheque that matches SAP, a transfer that matches SAP (bank amount wins),
      a transfer with no SAP counterpart, and card takings at the counter
    - 2024-03-12: a card payment SAP only has at a different amount, and cash at the counter
    """
    return [
        {
            'date': '2024-03-05',
            'Paiements Chèques': [
                {'client': 'CLIENT', 'amount': 0},
                {'client': 'SARL Boulangerie Martin', 'amount': 500.0, 'remarks': 'chq 1234'},
                {'client': 'Total', 'amount': 500.0},
            ],
            'Virements': [
                {'client': 'Dupont Freres', 'bank': 1200.0, 'amount': 1180.0},
                {'client': 'Inconnu Traiteur', 'amount': 750.0},
            ],
            'POS': {
                'Caisse CB': [
                    {'client': '', 'amount': 84.5},
                    {'client': 'Total', 'amount': 84.5},
                ],
            },
        },
        {
            'date': '2024-03-12',
            'Paiements CB Site': [
                {'client': 'Hotel du Lac SA', 'amount': 1800.0},
            ],
            'POS': {
                'Caisse Espèces': [
                    {'client': '', 'amount': 150.0},
                ],
            },
        },
    ]


@pytest.fixture
def sample_sap_documents():
    return [
        {'id': 'sap-1', 'DocNum': 1001, 'DocDate': '2024-03-07', 'CardCode': 'C0001',
         'CardName': 'Boulangerie Martin', 'DocTotal': 503.0},
        {'id': 'sap-2', 'DocNum': 1002, 'DocDate': '2024-03-04', 'CardCode': 'C0002',
         'CardName': 'DUPONT FRERES', 'DocTotal': 1200.0},
        {'id': 'sap-3', 'DocNum': 1003, 'DocDate': '2024-03-20', 'CardCode': 'C0003',
         'CardName': 'Hotel du Lac', 'DocTotal': 2000.0},
        {'id': 'sap-4', 'DocNum': 1004, 'DocDate': '2024-03-10', 'CardCode': 'C0004',
         'CardName': 'Traiteur Inconnu', 'DocTotal': 760.0},
        {'id': 'sap-pos', 'DocNum': 1005, 'DocDate': '2024-03-05', 'CardCode': 'C9999',
         'CardName': 'Client Comptoir', 'DocTotal': 80.0},
        {'id': 'sap-5', 'DocNum': 1006, 'DocDate': '2024-04-20', 'CardCode': 'C0005',
         'CardName': 'Cave Saint Jean', 'DocTotal': 430.0},
    ]


@pytest.fixture
def sample_bank_statements():
    return [
        {'id': 'bank-1', 'operationDate': '2024-03-08', 'operationRef': 'OP001',
         'operationType': 'REMISE', 'amount': 500.0, 'comment': 'REMISE CHEQUE',
         'detail1': 'BOULANGERIE MARTIN', 'bank': 'CIC'},
        {'id': 'bank-2', 'operationDate': '2024-03-21', 'operationRef': 'OP002',
         'operationType': 'VIR', 'amount': 2000.0, 'comment': 'VIR SEPA', 'detail1': 'XYZ',
         'bank': 'CIC'},
        {'id': 'bank-3', 'operationDate': '2024-03-25', 'operationRef': 'OP003',
         'operationType': 'FRAIS', 'amount': 99.99, 'comment': 'FRAIS BANCAIRES', 'bank': 'CIC'},
    ]


@pytest.fixture
def seeded_repository(repository, sample_sap_documents, sample_bank_statements):
    """Repository holding the SAP and bank feeds (daily sales arrive with the comparison)"""
    for document in sample_sap_documents:
        repository.add_sap_document(document)
    for statement in sample_bank_statements:
        repository.add_bank_statement(statement)
    return repository


@pytest.fixture
def march_ledger(seeded_repository, sample_daily_sales, matching_config, date_range):
    """A ledger for March 2024 computed from the sample feeds"""
    from backoffice.services.reconciliation_service import ReconciliationService

    service = ReconciliationService(seeded_repository, matching_config)
    ledger, _ = service.compare_data(date_range, sample_daily_sales)
    return ledger
