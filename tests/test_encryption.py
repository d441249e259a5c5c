import os
import stat

import pytest

import encryption
import peerline
from encryption import CipherError, NullCipher, RsaCipher


def test_rsa_round_trip(rsa_key):

    cipher = RsaCipher(rsa_key)
    plaintext = b"\x00\x05\x00\x00\x00hello"

    ciphertext = cipher.encrypt(plaintext)
    assert ciphertext != plaintext
    assert len(ciphertext) == cipher.ciphertext_size
    assert cipher.decrypt(ciphertext) == plaintext


def test_rsa_sizes(rsa_key):
    """ RSA-2048 with OAEP/SHA-256 carries 256 - 2*32 - 2 bytes per block. """

    cipher = RsaCipher(rsa_key)
    assert cipher.max_block_size == 190
    assert cipher.ciphertext_size == 256

    cipher.encrypt(b"x" * 190)
    with pytest.raises(CipherError):
        cipher.encrypt(b"x" * 191)


def test_rsa_decrypt_garbage(rsa_key):

    cipher = RsaCipher(rsa_key)
    with pytest.raises(CipherError):
        cipher.decrypt(os.urandom(256))
    with pytest.raises(CipherError):
        cipher.decrypt(b"short")


def test_rsa_two_keys(rsa_key, peer_rsa_key):
    """ Each side encrypts to the other's public key. """

    alice = RsaCipher(rsa_key, peer_rsa_key.public_key())
    bob = RsaCipher(peer_rsa_key, rsa_key.public_key())

    assert bob.decrypt(alice.encrypt(b"to bob")) == b"to bob"
    assert alice.decrypt(bob.encrypt(b"to alice")) == b"to alice"

    with pytest.raises(CipherError):
        alice.decrypt(alice.encrypt(b"not for me"))


def test_null_cipher():

    cipher = NullCipher()
    assert cipher.max_block_size is None
    assert cipher.ciphertext_size is None
    assert cipher.encrypt(b"abc") == b"abc"
    assert cipher.decrypt(bytearray(b"abc")) == b"abc"


def test_key_files(tmp_path, rsa_key):

    private_path = tmp_path / "keys" / "private.pem"
    encryption.save_private_key(str(private_path), rsa_key)
    encryption.save_public_key(str(tmp_path / "public.pem"), rsa_key.public_key())

    mode = stat.S_IMODE(private_path.stat().st_mode)
    assert mode == 0o600

    loaded = encryption.load_private_key(str(private_path))
    public = encryption.load_public_key(str(tmp_path / "public.pem"))
    assert loaded.public_key().public_numbers() == rsa_key.public_key().public_numbers()
    assert public.public_numbers() == rsa_key.public_key().public_numbers()


def test_generate_key_files(tmp_path, capsys):

    private_path = tmp_path / "me.pem"
    key = encryption.generate_key_files(str(private_path), key_size=2048)

    # Library code stays silent; the CLI reports the result.
    assert capsys.readouterr().out == ""

    assert private_path.exists()
    assert (tmp_path / "me.pem.pub").exists()

    cipher = RsaCipher.from_files(str(private_path), str(tmp_path / "me.pem.pub"))
    assert cipher.public_key.public_numbers() == key.public_key().public_numbers()
    assert cipher.decrypt(cipher.encrypt(b"ping")) == b"ping"


def test_load_missing_key(tmp_path):

    with pytest.raises(OSError):
        encryption.load_private_key(str(tmp_path / "nope.pem"))


def test_gen_key_command_reports_paths(tmp_path, monkeypatch, capsys):

    monkeypatch.chdir(tmp_path)
    private_path = tmp_path / "cli.pem"

    peerline.main(["--gen-key", "--key-file", str(private_path), "--key-size", "2048"])

    out = capsys.readouterr().out
    assert f"RSA-2048 keypair written to {private_path} and {private_path}.pub" in out
    assert (tmp_path / "cli.pem.pub").exists()
