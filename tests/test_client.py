import asyncio
import io

import pytest

from ftpool import Basic, Config, FtpClient, Limits, Listing, Pool, Timeout
from ftpool.errors import AuthError, ProtocolError, TransientError
from ftpool.protocol import unquote

from .conftest import PASSWORD, USER


def assert_no_leaks(client):
    stats = client.stats()
    assert stats["live"] == stats["idle"]


class TestListing:
    @pytest.mark.asyncio
    async def test_list_with_mlsd(self, client):
        records = {record.name: record for record in await client.list("/")}
        assert set(records) == {"hello.txt", "with space.bin", "docs"}
        assert records["hello.txt"].size == 12
        assert records["hello.txt"].is_file()
        assert records["docs"].is_dir()
        assert records["with space.bin"].size == 1024
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_list_subdirectory(self, client):
        records = await client.list("/docs")
        assert [record.name for record in records] == ["guide.txt"]

    @pytest.mark.asyncio
    async def test_list_without_mlsd(self, ftp):
        async with ftp().client() as plain:
            expected = await plain.list("/")

        async with ftp(stubs={"MLSD /": (500, "MLSD not understood")}).client() as client:
            records = await client.list("/")
            assert client.pool.connections[0].listing is Listing.LIST
            # cached: the second listing goes straight to LIST
            assert len(await client.list("/")) == len(records)
            assert_no_leaks(client)

        def summary(items):
            return sorted((record.name, record.type, record.size) for record in items)

        assert summary(records) == summary(expected)

    @pytest.mark.asyncio
    async def test_stat(self, client):
        record = await client.stat("/hello.txt")
        assert record.name == "hello.txt"
        assert record.size == 12
        assert record.is_file()

        record = await client.stat("/docs")
        assert record.is_dir()
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_stat_without_mlst(self, ftp):
        stubs = {"MLST /docs/guide.txt": (502, "MLST not implemented")}
        async with ftp(stubs=stubs).client() as client:
            record = await client.stat("/docs/guide.txt")
            assert record.name == "guide.txt"
            assert record.size == 7
            assert record.is_file()
            assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_stat_without_mlst_missing(self, ftp):
        stubs = {"MLST /docs/nothing": (502, "MLST not implemented")}
        async with ftp(stubs=stubs).client() as client:
            with pytest.raises(ProtocolError) as info:
                await client.stat("/docs/nothing")
            assert info.value.reply.status == 550
            assert unquote(info.value.reply.message) == "/docs/nothing"
            assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_stat_working_directory_without_mlst(self, ftp):
        async with ftp(stubs={"MLST": (502, "MLST not implemented")}).client() as client:
            async with client.pool.lease() as connection:
                await connection.change_directory("/docs")
                record = await connection.stat("")
                assert record.name == "docs"
                assert record.is_dir()

                await connection.change_directory("/")
                with pytest.raises(ProtocolError) as info:
                    await connection.stat("")
                assert info.value.reply.status == 502
            assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_exists(self, client):
        assert await client.exists("/hello.txt")
        assert not await client.exists("/nope.txt")
        assert_no_leaks(client)


class TestChanges:
    @pytest.mark.asyncio
    async def test_delete(self, client, root):
        await client.delete("/hello.txt")
        assert not (root / "hello.txt").exists()

        with pytest.raises(ProtocolError):
            await client.delete("/hello.txt")
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_rename(self, client, root):
        await client.rename("/hello.txt", "/docs/moved.txt")
        assert not (root / "hello.txt").exists()
        assert (root / "docs" / "moved.txt").read_bytes() == b"hello world\n"

        with pytest.raises(ProtocolError):
            await client.rename("/hello.txt", "/again.txt")
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_mkdir_rmdir(self, client, root):
        created = await client.mkdir("/fresh")
        assert created.rstrip("/").endswith("fresh")
        assert (root / "fresh").is_dir()
        assert (await client.stat("/fresh")).is_dir()

        await client.rmdir("/fresh")
        assert not (root / "fresh").exists()

        with pytest.raises(ProtocolError):
            await client.rmdir("/fresh")
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_getwd(self, client):
        assert await client.getwd() == "/"
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_getwd_with_quote_in_path(self, client, root):
        async with client.pool.lease() as connection:
            created = await connection.mkdir('/dir-with-"')
            assert (root / 'dir-with-"').is_dir()
            assert await connection.change_directory(created) == '/dir-with-"'
            assert await connection.getwd() == '/dir-with-"'
            assert await connection.change_directory("/") == "/"
            assert not connection.broken

        await client.rmdir('/dir-with-"')
        assert not (root / 'dir-with-"').exists()
        assert_no_leaks(client)


class TestTransfers:
    @pytest.mark.asyncio
    async def test_read(self, client):
        assert await client.read("/hello.txt") == b"hello world\n"
        assert await client.read("/with space.bin") == bytes(range(256)) * 4
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_store_bytes(self, client, root):
        assert await client.store("/up.bin", b"\x00\x01" * 5000) == 10000
        assert (root / "up.bin").read_bytes() == b"\x00\x01" * 5000
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_store_file_object(self, client, root):
        sent = await client.store("/docs/from-file.txt", io.BytesIO(b"file object"))
        assert sent == 11
        assert (root / "docs" / "from-file.txt").read_bytes() == b"file object"

    @pytest.mark.asyncio
    async def test_store_async_iterable(self, client, root):
        async def chunks():
            for index in range(3):
                yield f"chunk {index};".encode()

        await client.store("/chunks.txt", chunks())
        assert (root / "chunks.txt").read_bytes() == b"chunk 0;chunk 1;chunk 2;"

    @pytest.mark.asyncio
    async def test_store_rejects_unknown_source(self, client):
        with pytest.raises(TypeError):
            await client.store("/x", 42)

    @pytest.mark.asyncio
    async def test_retrieve_into_buffer(self, client):
        buffer = io.BytesIO()
        assert await client.retrieve("/docs/guide.txt", buffer) == 7
        assert buffer.getvalue() == b"read me"

    @pytest.mark.asyncio
    async def test_retrieve_missing(self, client):
        with pytest.raises(ProtocolError):
            await client.read("/missing.bin")
        assert_no_leaks(client)
        # the pool recovers
        assert await client.read("/hello.txt") == b"hello world\n"

    @pytest.mark.asyncio
    async def test_upload_download(self, client, root, tmp_path):
        local = tmp_path / "local.txt"
        local.write_bytes(b"round trip through the server")
        assert await client.upload(local, "/remote.txt") == 29
        assert (root / "remote.txt").read_bytes() == local.read_bytes()

        target = tmp_path / "back.txt"
        assert await client.download("/remote.txt", target) == 29
        assert target.read_bytes() == local.read_bytes()

    @pytest.mark.asyncio
    async def test_upload_missing_local_file(self, client, tmp_path):
        with pytest.raises(FileNotFoundError):
            await client.upload(tmp_path / "nope", "/nope")

    @pytest.mark.asyncio
    async def test_pasv_only(self, ftp):
        async with ftp(passive=("pasv",)).client() as client:
            assert await client.read("/hello.txt") == b"hello world\n"
            assert_no_leaks(client)


class TestPooling:
    @pytest.mark.asyncio
    async def test_concurrent_operations_share_the_pool(self, client):
        results = await asyncio.gather(*(client.read("/hello.txt") for _ in range(6)))
        assert results == [b"hello world\n"] * 6
        stats = client.stats()
        assert stats["dialed"] <= 2
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_prewarmed(self, ftp):
        async with ftp(limits=Limits(connections=3, minimum=2)).client() as client:
            assert client.stats()["idle"] == 2
            await client.getwd()
            assert client.stats()["dialed"] == 2

    @pytest.mark.asyncio
    async def test_stale_connection_is_retried(self, client):
        await client.getwd()
        idle = client.pool.connections[0]
        # Simulate the server dropping an idle session
        idle.stream.close()
        await asyncio.sleep(0.05)

        assert await client.getwd() == "/"
        assert client.stats()["dialed"] == 2
        assert_no_leaks(client)

    @pytest.mark.asyncio
    async def test_bad_password(self, ftp):
        async with ftp(auth=Basic(USER, PASSWORD + "x")).client() as client:
            with pytest.raises(AuthError):
                await client.getwd()
            assert client.stats()["live"] == 0

    @pytest.mark.asyncio
    async def test_hooks(self, ftp):
        events = []

        async def connect(connection):
            events.append(("connect", connection.cwd))

        async def release(connection):
            events.append(("release", connection.leases))

        async def error(exception):
            events.append(("error", type(exception).__name__))

        hooks = {"connect": connect, "release": release, "error": error}
        async with ftp(hooks=hooks).client() as client:
            await client.getwd()
            with pytest.raises(ProtocolError):
                await client.delete("/missing")

        assert events == [
            ("connect", "/"),
            ("release", 1),
            ("error", "ProtocolError"),
        ]

    @pytest.mark.asyncio
    async def test_failing_hook_warns(self, ftp):
        async def connect(connection):
            raise RuntimeError("boom")

        async with ftp(hooks={"connect": connect}).client() as client:
            with pytest.warns(UserWarning, match="Connect hook failed"):
                await client.getwd()


class FakeConnection:
    def __init__(self):
        self.broken = False
        self.pending = None

    @property
    def healthy(self):
        return not self.broken

    def lease(self):
        pass

    def close(self):
        pass

    async def quit(self):
        pass


def fake_client(hooks=None):
    client = FtpClient(Config(host="ftp.example.com", hooks=hooks or {}))

    async def factory():
        return FakeConnection()

    client.pool = Pool(factory, Limits(connections=1), Timeout(pool=1.0))
    return client


class TestRetry:
    @pytest.mark.asyncio
    async def test_stale_failure_is_retried_once(self):
        client = fake_client()
        attempts = []

        async def operation(connection):
            attempts.append(connection)
            if len(attempts) == 1:
                connection.broken = True
                raise TransientError("reset", stale=True)
            return "done"

        assert await client.execute(operation) == "done"
        assert len(attempts) == 2
        assert attempts[0] is not attempts[1]

    @pytest.mark.asyncio
    async def test_only_one_retry(self):
        client = fake_client()
        attempts = []

        async def operation(connection):
            attempts.append(connection)
            connection.broken = True
            raise TransientError("reset", stale=True)

        with pytest.raises(TransientError):
            await client.execute(operation)
        assert len(attempts) == 2
        assert client.pool.live == 0

    @pytest.mark.asyncio
    async def test_failure_after_an_exchange_is_not_retried(self):
        seen = []

        async def error(exception):
            seen.append(exception)

        client = fake_client(hooks={"error": error})
        attempts = []

        async def operation(connection):
            attempts.append(connection)
            connection.broken = True
            raise TransientError("reset", stale=False)

        with pytest.raises(TransientError):
            await client.execute(operation)
        assert len(attempts) == 1
        assert len(seen) == 1
