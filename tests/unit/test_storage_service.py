"""
Testes do cliente de storage contra o servidor simulado
"""
import httpx
import pytest

from osdesk.schemas.media import MediaFile
from osdesk.services.storage_service import StorageService, StorageError


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_e_url_assinada(self, storage, storage_server):
        result = await storage.upload_and_get_signed_url("temp/1-ab.jpg", b"jpeg", "image/jpeg")

        assert result["path"] == "temp/1-ab.jpg"
        assert result["signed_url"] == (
            "http://storage.test/storage/v1/object/sign/service-orders-media/temp/1-ab.jpg?token=t1"
        )
        assert storage_server.objects["temp/1-ab.jpg"] == b"jpeg"

    @pytest.mark.asyncio
    async def test_nao_sobrescreve_path_existente(self, storage, storage_server):
        storage_server.objects["temp/1-ab.jpg"] = b"original"

        with pytest.raises(StorageError) as exc:
            await storage.upload("temp/1-ab.jpg", b"novo", "image/jpeg")

        assert exc.value.status_code == 409
        assert not exc.value.size_limit
        assert storage_server.objects["temp/1-ab.jpg"] == b"original"

    @pytest.mark.asyncio
    async def test_limite_de_tamanho(self, storage, storage_server):
        storage_server.upload_error = (400, "The object exceeded the maximum allowed size")

        with pytest.raises(StorageError) as exc:
            await storage.upload("temp/grande.mp4", b"x", "video/mp4")

        assert exc.value.size_limit

    @pytest.mark.asyncio
    async def test_envia_credenciais(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json={})

        storage = StorageService(
            "http://storage.test/", "chave", "bucket", transport=httpx.MockTransport(handler)
        )
        await storage.upload("a.jpg", b"a", "image/jpeg")

        assert seen["authorization"] == "Bearer chave"
        assert seen["apikey"] == "chave"
        assert seen["x-upsert"] == "false"

    @pytest.mark.asyncio
    async def test_erro_de_conexao(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("recusada", request=request)

        storage = StorageService("http://storage.test", "chave", "bucket", transport=httpx.MockTransport(handler))
        with pytest.raises(StorageError) as exc:
            await storage.upload("a.jpg", b"a", "image/jpeg")
        assert "conexão" in str(exc.value)


class TestSignedUrls:
    @pytest.mark.asyncio
    async def test_get_signed_url_devolve_none_em_falha(self, storage):
        assert await storage.get_signed_url("nao/existe.jpg") is None

    @pytest.mark.asyncio
    async def test_get_signed_urls_mantem_anterior(self, storage, storage_server):
        storage_server.objects["ok.jpg"] = b"1"
        files = [
            MediaFile(url="http://velha/ok", path="ok.jpg", type="image", name="ok.jpg"),
            MediaFile(url="http://velha/falta", path="falta.jpg", type="image", name="falta.jpg"),
        ]

        signed = await storage.get_signed_urls(files)

        assert signed[0].url.endswith("ok.jpg?token=t1")
        assert signed[1].url == "http://velha/falta"


class TestMoveRemoveList:
    @pytest.mark.asyncio
    async def test_move(self, storage, storage_server):
        storage_server.objects["temp/a.jpg"] = b"a"
        await storage.move("temp/a.jpg", "order-1/a.jpg")
        assert storage_server.objects == {"order-1/a.jpg": b"a"}

    @pytest.mark.asyncio
    async def test_move_inexistente(self, storage):
        with pytest.raises(StorageError):
            await storage.move("temp/nada.jpg", "order-1/nada.jpg")

    @pytest.mark.asyncio
    async def test_remove(self, storage, storage_server):
        storage_server.objects.update({"a.jpg": b"a", "b.jpg": b"b"})
        await storage.remove(["a.jpg"])
        assert list(storage_server.objects) == ["b.jpg"]

    @pytest.mark.asyncio
    async def test_remove_lista_vazia_nao_chama_o_storage(self):
        def handler(request):
            raise AssertionError("não deveria chamar o storage")

        storage = StorageService("http://storage.test", "chave", "bucket", transport=httpx.MockTransport(handler))
        await storage.remove([])

    @pytest.mark.asyncio
    async def test_list(self, storage, storage_server):
        storage_server.objects.update({"order-1/a.jpg": b"a", "order-2/b.jpg": b"b"})
        entries = await storage.list("order-1/")
        assert [e["name"] for e in entries] == ["a.jpg"]
