import pathlib

import pytest

from gitprivate import rekey
from gitprivate.keys import Access, KeyRegistry
from gitprivate.secrets import Outcome
from gitprivate.utils import DecryptionFailed, NoRecipients, ReEncryptionBlocked


@pytest.fixture()
def hidden(keeper, registry, write):
    for name in ('a.txt', 'b.txt'):
        write(name)
    list(keeper.add([pathlib.Path('a.txt'), pathlib.Path('b.txt')]))
    list(keeper.hide(keeper.select(), registry))
    return keeper


def ciphertexts(keeper):
    return {s.path: s.encrypted.read_bytes() for s in keeper.secrets()}


def test_adding_a_key_re_encrypts_files(hidden, registry, one, another):
    before = ciphertexts(hidden)
    updated = registry.add(another.entry())

    results = list(rekey.update_keys(hidden, registry, updated))
    assert [o for _, o in results] == [Outcome.HIDDEN, Outcome.HIDDEN]
    assert ciphertexts(hidden) != before
    assert hidden.store.load_keys(another.identity) == updated

    for secret in hidden.secrets():
        secret.decrypted.unlink()
    list(hidden.reveal(hidden.select(), another.identity))
    assert all(status.value == 'hidden, in sync' for _, status in hidden.status())


def test_removing_a_key_revokes_it(hidden, registry, one, another):
    with_another = registry.add(another.entry())
    list(rekey.update_keys(hidden, registry, with_another))
    list(rekey.update_keys(hidden, with_another, with_another.remove('another')))

    with pytest.raises(DecryptionFailed):
        hidden.store.load_keys(another.identity)
    for secret in hidden.secrets():
        with pytest.raises(DecryptionFailed):
            hidden.age.decrypt(secret.encrypted.read_bytes(), another.identity)


def test_modified_file_blocks_re_encryption(hidden, registry, another, write):
    write('b.txt', b'modified')
    before = ciphertexts(hidden)
    keys_before = hidden.config.keys_file.read_bytes()

    with pytest.raises(ReEncryptionBlocked, match="b.txt"):
        list(rekey.update_keys(hidden, registry, registry.add(another.entry())))

    assert ciphertexts(hidden) == before
    assert hidden.config.keys_file.read_bytes() == keys_before


def test_unrevealed_file_blocks_re_encryption(hidden, registry, another):
    (hidden.root / 'a.txt').unlink()
    with pytest.raises(ReEncryptionBlocked, match="not revealed"):
        list(rekey.update_keys(hidden, registry, registry.add(another.entry())))


def test_rehide_leaves_plaintext(hidden, registry):
    plaintexts = {s.path: s.decrypted.read_bytes() for s in hidden.secrets()}
    list(rekey.rehide(hidden, registry))
    assert {s.path: s.decrypted.read_bytes() for s in hidden.secrets()} == plaintexts


def test_first_key_skips_re_encryption(keeper, one, write):
    write('secret.txt')
    list(keeper.add([pathlib.Path('secret.txt')]))
    updated = KeyRegistry().add(one.entry())

    assert list(rekey.update_keys(keeper, KeyRegistry(), updated)) == []
    assert keeper.store.load_keys(one.identity) == updated


def test_read_only_first_key_is_refused(keeper, one):
    with pytest.raises(NoRecipients):
        list(rekey.update_keys(keeper, KeyRegistry(), KeyRegistry().add(one.entry(Access.READ_ONLY))))
    assert not keeper.config.keys_file.exists()


def test_removing_last_writer_is_refused(hidden, registry, another):
    with_reader = registry.add(another.entry(Access.READ_ONLY))
    list(rekey.update_keys(hidden, registry, with_reader))

    with pytest.raises(NoRecipients):
        list(rekey.update_keys(hidden, with_reader, with_reader.remove('one')))
