"""
Tests for the HTTP API.
"""
import os
import tempfile

from fastapi.testclient import TestClient

from avatar_studio.api.app import create_app
from avatar_studio.core.errors import GenerationFailed
from avatar_studio.core.ledger import LedgerStore
from avatar_studio.core.orchestrator import GenerationOrchestrator
from avatar_studio.core.usage import UsageRecorder
from avatar_studio.generators import GeneratedContent, Generator
from avatar_studio.storage.models import ContentKind
from avatar_studio.storage.repository import ArtifactRepository, UsageRepository, initialize_schema


class StubGenerator(Generator):
    def __init__(self):
        self.fail = False

    def generate(self, prompt, kind, timeout, seed=None):
        if self.fail:
            raise GenerationFailed("upstream unavailable")
        suffix = 'mp4' if kind is ContentKind.VIDEO else 'png'
        return GeneratedContent(url=f"https://cdn.example.com/{seed}.{suffix}")


class APITestCase:
    """Shared app setup for API tests."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = LedgerStore(self.db_path)
        self.generator = StubGenerator()
        self.orchestrator = GenerationOrchestrator(
            ledger=self.ledger,
            artifacts=ArtifactRepository(self.db_path),
            usage=UsageRecorder(UsageRepository(self.db_path)),
            generator=self.generator,
        )
        self.client = TestClient(create_app(orchestrator=self.orchestrator))

    def teardown_method(self):
        """Clean up test environment."""
        self.orchestrator.shutdown()
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestHealth(APITestCase):

    def test_health(self):
        response = self.client.get('/health')

        assert response.status_code == 200
        assert response.json() == {'message': 'alive'}


class TestGenerations(APITestCase):
    """Test generation endpoints."""

    def test_create_success(self):
        self.ledger.open_account('alice', initial_balance=5)

        response = self.client.post('/generations', json={
            'accountId': 'alice',
            'kind': 'image',
            'attributes': {'gender': 'female', 'hairColor': 'red'},
        })

        assert response.status_code == 200
        body = response.json()
        assert body['creditsRemaining'] == 4
        assert body['generation']['kind'] == 'image'
        assert body['generation']['prompt'] == 'Portrait of a person with female features, red hair'
        assert body['generation']['url'].startswith('https://cdn.example.com/')

    def test_insufficient_funds(self):
        self.ledger.open_account('alice', initial_balance=2)

        response = self.client.post('/generations', json={
            'accountId': 'alice', 'kind': 'video', 'prompt': 'A dancing robot'
        })

        assert response.status_code == 402
        assert response.json() == {'error': 'INSUFFICIENT_FUNDS'}
        assert self.ledger.get_balance('alice') == 2

    def test_generation_failed_refunds(self):
        self.ledger.open_account('alice', initial_balance=5)
        self.generator.fail = True

        response = self.client.post('/generations', json={
            'accountId': 'alice', 'kind': 'video', 'prompt': 'A dancing robot'
        })

        assert response.status_code == 502
        assert response.json() == {'error': 'GENERATION_FAILED', 'detail': 'upstream unavailable'}
        assert self.ledger.get_balance('alice') == 5

    def test_unknown_account_is_internal_error(self):
        response = self.client.post('/generations', json={'accountId': 'ghost', 'prompt': 'A cat'})

        assert response.status_code == 500
        assert response.json() == {'error': 'ACCOUNT_NOT_FOUND'}

    def test_prompt_and_attributes_rejected(self):
        self.ledger.open_account('alice', initial_balance=5)

        response = self.client.post('/generations', json={
            'accountId': 'alice', 'prompt': 'A cat', 'attributes': {'gender': 'male'}
        })

        assert response.status_code == 400
        assert response.json()['error'] == 'INVALID_REQUEST'
        assert self.ledger.get_balance('alice') == 5

    def test_missing_prompt_source_rejected(self):
        response = self.client.post('/generations', json={'accountId': 'alice'})

        assert response.status_code == 400
        assert 'one of prompt or attributes is required' in response.json()['detail']

    def test_unknown_kind_rejected(self):
        response = self.client.post('/generations', json={
            'accountId': 'alice', 'kind': 'audio', 'prompt': 'A song'
        })

        assert response.status_code == 400
        assert response.json()['error'] == 'INVALID_REQUEST'

    def test_unknown_attribute_rejected(self):
        self.ledger.open_account('alice', initial_balance=5)

        response = self.client.post('/generations', json={
            'accountId': 'alice', 'attributes': {'wingspan': 'large'}
        })

        assert response.status_code == 400
        assert 'Unknown attribute' in response.json()['detail']

    def test_foreign_avatar_rejected(self):
        self.ledger.open_account('alice', initial_balance=5)
        self.ledger.open_account('bob', initial_balance=5)
        avatar = self.client.post('/avatars', json={'accountId': 'alice', 'name': 'Nova'}).json()

        response = self.client.post('/generations', json={
            'accountId': 'bob', 'prompt': 'A cat', 'avatarId': avatar['id']
        })

        assert response.status_code == 400
        assert response.json() == {'error': 'AVATAR_NOT_FOUND'}
        assert self.ledger.get_balance('bob') == 5

    def test_blank_avatar_id_stored_as_none(self):
        self.ledger.open_account('alice', initial_balance=5)

        response = self.client.post('/generations', json={
            'accountId': 'alice', 'prompt': 'A cat', 'avatarId': ''
        })

        assert response.status_code == 200
        assert response.json()['generation']['avatarId'] is None

    def test_list_and_delete(self):
        self.ledger.open_account('alice', initial_balance=5)
        first = self.client.post('/generations', json={'accountId': 'alice', 'prompt': 'One'}).json()
        second = self.client.post('/generations', json={
            'accountId': 'alice', 'kind': 'video', 'prompt': 'Two'
        }).json()

        listed = self.client.get('/generations', params={'accountId': 'alice'}).json()
        assert [g['id'] for g in listed] == [second['generation']['id'], first['generation']['id']]

        videos = self.client.get('/generations', params={'accountId': 'alice', 'kind': 'video'}).json()
        assert [g['id'] for g in videos] == [second['generation']['id']]

        generation_id = first['generation']['id']
        assert self.client.delete(f'/generations/{generation_id}', params={'accountId': 'bob'}).status_code == 404
        assert self.client.delete(f'/generations/{generation_id}', params={'accountId': 'alice'}).status_code == 204
        assert self.client.delete(f'/generations/{generation_id}').status_code == 404

    def test_list_requires_account(self):
        response = self.client.get('/generations')

        assert response.status_code == 400


class TestAccounts(APITestCase):
    """Test account endpoints."""

    def test_balance(self):
        self.ledger.open_account('alice', initial_balance=7)

        response = self.client.get('/accounts/alice/balance')

        assert response.status_code == 200
        assert response.json() == {'accountId': 'alice', 'balance': 7, 'tier': 'free'}

    def test_balance_unknown_account(self):
        response = self.client.get('/accounts/ghost/balance')

        assert response.status_code == 404
        assert response.json() == {'error': 'ACCOUNT_NOT_FOUND'}

    def test_usage(self):
        self.ledger.open_account('alice', initial_balance=5)
        self.client.post('/generations', json={'accountId': 'alice', 'prompt': 'A cat'})

        entries = self.client.get('/accounts/alice/usage').json()

        assert len(entries) == 1
        assert entries[0]['creditsUsed'] == 1
        assert entries[0]['action'] == 'generate_image'


class TestAvatars(APITestCase):
    """Test avatar endpoints."""

    def setup_method(self):
        super().setup_method()
        self.ledger.open_account('alice', initial_balance=5)

    def test_crud(self):
        created = self.client.post('/avatars', json={
            'accountId': 'alice', 'name': 'Nova', 'gender': 'female', 'hairColor': 'red'
        })
        assert created.status_code == 201
        avatar = created.json()
        assert avatar['hairColor'] == 'red'
        assert avatar['style'] == 'realistic'

        fetched = self.client.get(f"/avatars/{avatar['id']}")
        assert fetched.json()['name'] == 'Nova'

        updated = self.client.patch(f"/avatars/{avatar['id']}", json={'eyeColor': 'green', 'name': 'Nova II'})
        assert updated.status_code == 200
        assert updated.json()['eyeColor'] == 'green'
        assert updated.json()['name'] == 'Nova II'
        assert updated.json()['hairColor'] == 'red'

        listed = self.client.get('/avatars', params={'accountId': 'alice'}).json()
        assert [a['id'] for a in listed] == [avatar['id']]

        assert self.client.delete(f"/avatars/{avatar['id']}").status_code == 204
        assert self.client.get(f"/avatars/{avatar['id']}").status_code == 404

    def test_create_for_unknown_account(self):
        response = self.client.post('/avatars', json={'accountId': 'ghost', 'name': 'Nova'})

        assert response.status_code == 404

    def test_null_name_rejected(self):
        avatar = self.client.post('/avatars', json={'accountId': 'alice', 'name': 'Nova'}).json()

        response = self.client.patch(f"/avatars/{avatar['id']}", json={'name': None})

        assert response.status_code == 400

    def test_update_missing(self):
        response = self.client.patch('/avatars/missing', json={'name': 'x'})

        assert response.status_code == 404

    def test_image_generation_sets_primary_image(self):
        avatar = self.client.post('/avatars', json={'accountId': 'alice', 'name': 'Nova'}).json()

        result = self.client.post('/generations', json={
            'accountId': 'alice', 'avatarId': avatar['id'], 'prompt': 'Portrait'
        }).json()

        fetched = self.client.get(f"/avatars/{avatar['id']}").json()
        assert fetched['primaryImageUrl'] == result['generation']['url']


class TestSettlements(APITestCase):
    """Test payment settlement."""

    def test_settlement_grants_once(self):
        self.ledger.open_account('alice', initial_balance=0)
        payload = {'accountId': 'alice', 'paymentId': 'pi_1', 'amountCents': 999}

        first = self.client.post('/payments/settlements', json=payload)
        second = self.client.post('/payments/settlements', json=payload)

        assert first.status_code == 200
        assert first.json()['creditsGranted'] == 99
        assert first.json()['alreadySettled'] is False
        assert second.json()['creditsGranted'] == 0
        assert second.json()['alreadySettled'] is True
        assert second.json()['balance'] == 99

    def test_settlement_too_small(self):
        self.ledger.open_account('alice', initial_balance=0)

        response = self.client.post('/payments/settlements', json={
            'accountId': 'alice', 'paymentId': 'pi_1', 'amountCents': 5
        })

        assert response.status_code == 400

    def test_settlement_unknown_account(self):
        response = self.client.post('/payments/settlements', json={
            'accountId': 'ghost', 'paymentId': 'pi_1', 'amountCents': 1000
        })

        assert response.status_code == 404

    def test_settlement_non_positive_amount(self):
        response = self.client.post('/payments/settlements', json={
            'accountId': 'alice', 'paymentId': 'pi_1', 'amountCents': 0
        })

        assert response.status_code == 400
