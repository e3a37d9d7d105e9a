import pytest

from cert_store import create_self_signed_certificate


@pytest.fixture(scope="session")
def certificate_pair():
    return create_self_signed_certificate("hello.world.2048.net")


@pytest.fixture(scope="session")
def other_certificate_pair():
    return create_self_signed_certificate("someone.else.2048.net")


@pytest.fixture(scope="session")
def public_key(certificate_pair):
    return certificate_pair[0].public_key()


@pytest.fixture(scope="session")
def private_key(certificate_pair):
    return certificate_pair[1]


@pytest.fixture(scope="session")
def other_private_key(other_certificate_pair):
    return other_certificate_pair[1]
