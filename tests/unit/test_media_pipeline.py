"""
Testes da lista persistida de mídia e do pipeline de upload
"""
import io
import json

import pytest

from osdesk.schemas.media import MediaFile
from osdesk.services.media_normalizer import IncomingMedia
from osdesk.services.media_pipeline import (
    MediaPipeline,
    MediaSetState,
    PersistedMediaFiles,
    draft_key,
)
from osdesk.services.storage_service import StorageError


def _media(path: str, media_type: str = "image", url: str = None) -> MediaFile:
    return MediaFile(
        url=url or f"http://storage.test/old/{path}",
        path=path,
        type=media_type,
        name=path.rsplit("/", 1)[-1],
    )


def _incoming(name: str, content_type: str, data: bytes) -> IncomingMedia:
    return IncomingMedia(name=name, content_type=content_type, size=len(data), file=io.BytesIO(data))


class TestDraftKey:
    def test_nova_os(self):
        assert draft_key(7, "service_orders") == "os_media_files:7:service_orders_new"

    def test_edicao(self):
        assert draft_key(7, "service_orders_informatica", "abc") == (
            "os_media_files:7:service_orders_informatica_edit_abc"
        )


class TestPersistedMediaFiles:
    @pytest.mark.asyncio
    async def test_lista_sobrevive_a_recarga(self, draft_store):
        """A página recarregou (câmera nativa): nova instância vê a mesma lista."""
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.load()
        await media_set.add_media_files([_media("temp/a.jpg")])
        await media_set.add_media_files([_media("temp/b.mp4", "video")])

        reloaded = PersistedMediaFiles(draft_store, "service_orders", 1)
        files = await reloaded.load()

        assert [f.path for f in files] == ["temp/a.jpg", "temp/b.mp4"]
        assert reloaded.state == MediaSetState.READY

    @pytest.mark.asyncio
    async def test_add_parte_do_rascunho_atual(self, draft_store):
        first = PersistedMediaFiles(draft_store, "service_orders", 1)
        second = PersistedMediaFiles(draft_store, "service_orders", 1)
        await first.load()
        await second.load()

        await first.add_media_files([_media("temp/a.jpg")])
        await second.add_media_files([_media("temp/b.jpg")])

        assert [f.path for f in await first.current()] == ["temp/a.jpg", "temp/b.jpg"]

    @pytest.mark.asyncio
    async def test_add_nao_duplica_path(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.add_media_files([_media("temp/a.jpg")])
        await media_set.add_media_files([_media("temp/a.jpg")])
        assert len(await media_set.current()) == 1

    @pytest.mark.asyncio
    async def test_edicao_comeca_carregando(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1, "order-1")
        await media_set.load()
        assert media_set.state == MediaSetState.LOADING

    @pytest.mark.asyncio
    async def test_merge_com_banco_sem_duplicar(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1, "order-1")
        await media_set.set_media_files([_media("order-1/b.jpg"), _media("order-1/c.jpg")])

        merged = await media_set.set_media_files_from_db([_media("order-1/a.jpg"), _media("order-1/b.jpg")])

        assert [f.path for f in merged] == ["order-1/a.jpg", "order-1/b.jpg", "order-1/c.jpg"]
        assert media_set.state == MediaSetState.READY
        assert media_set.loaded_from_db

    @pytest.mark.asyncio
    async def test_edicao_esvaziada_continua_como_rascunho(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1, "order-1")
        assert not await media_set.has_draft()

        await media_set.set_media_files([_media("order-1/a.jpg")])
        await media_set.remove_media_file(0)

        assert await media_set.has_draft()
        assert await media_set.current() == []

    @pytest.mark.asyncio
    async def test_nova_os_vazia_remove_a_chave(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.set_media_files([_media("temp/a.jpg")])
        await media_set.remove_media_file(0)
        assert not await media_set.has_draft()

    @pytest.mark.asyncio
    async def test_remove_indice_invalido(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        with pytest.raises(IndexError):
            await media_set.remove_media_file(0)

    @pytest.mark.asyncio
    async def test_clear_da_edicao_limpa_rascunho_de_nova_os(self, draft_store):
        new_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        edit_set = PersistedMediaFiles(draft_store, "service_orders", 1, "order-1")
        await new_set.set_media_files([_media("temp/a.jpg")])
        await edit_set.set_media_files([_media("order-1/b.jpg")])

        await edit_set.clear_persisted_files()

        assert await draft_store.get(new_set.storage_key) is None
        assert await draft_store.get(edit_set.storage_key) is None

    @pytest.mark.asyncio
    async def test_rascunho_invalido_vira_lista_vazia(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await draft_store.set(media_set.storage_key, "{nao-e-json")
        assert await media_set.load() == []

    @pytest.mark.asyncio
    async def test_rascunho_gravado_como_json(self, draft_store):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.add_media_files([_media("temp/a.jpg")])

        raw = json.loads(await draft_store.get("os_media_files:1:service_orders_new"))
        assert raw[0]["path"] == "temp/a.jpg"
        assert set(raw[0]) == {"url", "path", "type", "name"}


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_falha_em_um_arquivo_nao_interrompe_o_lote(self, pipeline, draft_store, storage_server, make_image):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        progress = []

        result = await pipeline.process_batch(
            [
                _incoming("notas.txt", "text/plain", b"abc"),
                _incoming("foto.png", "image/png", make_image()),
            ],
            "temp/",
            media_set,
            on_progress=lambda name, value: progress.append((name, value)),
        )

        assert len(result.uploaded) == 1
        assert len(result.failures) == 1
        assert result.failures[0].name == "notas.txt"

        uploaded = result.uploaded[0]
        assert uploaded.path.startswith("temp/")
        assert uploaded.path.endswith(".jpg")
        assert uploaded.type == "image"
        assert uploaded.name == "foto.jpg"
        assert uploaded.url.startswith("http://storage.test/storage/v1/object/sign/")
        assert uploaded.path in storage_server.objects
        assert storage_server.content_types[uploaded.path] == "image/jpeg"

        assert [f.path for f in await media_set.current()] == [uploaded.path]
        assert ("foto.png", 100) in progress
        assert ("foto.png", 70) in progress

    @pytest.mark.asyncio
    async def test_video_enviado_sem_recodificar(self, pipeline, draft_store, storage_server):
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        data = b"video-bytes" * 100

        result = await pipeline.process_batch([_incoming("VID.MOV", "", data)], "temp/", media_set)

        media = result.uploaded[0]
        assert media.type == "video"
        assert media.path.endswith(".mov")
        assert storage_server.objects[media.path] == data
        assert storage_server.content_types[media.path] == "video/quicktime"

    @pytest.mark.asyncio
    async def test_limite_do_storage(self, pipeline, draft_store, storage_server, make_image):
        storage_server.upload_error = (413, "Payload too large")
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)

        result = await pipeline.process_batch([_incoming("foto.png", "image/png", make_image())], "temp/", media_set)

        assert result.uploaded == []
        assert "excede o limite de 5GB" in result.failures[0].message
        assert await media_set.current() == []

    def test_nome_do_arquivo(self, pipeline):
        class Processed:
            media_type = "video"
            extension = "webm"

        name = MediaPipeline.build_file_name(Processed())
        stamp, rest = name.split("-", 1)
        assert stamp.isdigit()
        assert rest.endswith(".webm")


class TestRemoveFile:
    @pytest.mark.asyncio
    async def test_remove_do_storage_e_da_lista(self, pipeline, draft_store, storage_server):
        storage_server.objects["temp/a.jpg"] = b"a"
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.set_media_files([_media("temp/a.jpg"), _media("temp/b.jpg")])

        removed = await pipeline.remove_file(media_set, 0)

        assert removed.path == "temp/a.jpg"
        assert "temp/a.jpg" not in storage_server.objects
        assert [f.path for f in await media_set.current()] == ["temp/b.jpg"]

    @pytest.mark.asyncio
    async def test_falha_no_storage_mantem_a_lista(self, pipeline, draft_store, storage_server):
        storage_server.fail_remove.add("temp/a.jpg")
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.set_media_files([_media("temp/a.jpg")])

        with pytest.raises(StorageError):
            await pipeline.remove_file(media_set, 0)

        assert [f.path for f in await media_set.current()] == ["temp/a.jpg"]


class TestRelocation:
    @pytest.mark.asyncio
    async def test_move_de_temp_para_pasta_da_os(self, pipeline, storage_server):
        storage_server.objects["temp/x.jpg"] = b"x"

        result = await pipeline.relocate_on_first_save([_media("temp/x.jpg")], "order-123")

        assert result.failed_paths == []
        assert result.files[0].path == "order-123/x.jpg"
        assert "order-123/x.jpg" in result.files[0].url
        assert storage_server.objects == {"order-123/x.jpg": b"x"}

    @pytest.mark.asyncio
    async def test_prefixo_do_setor(self, pipeline, storage_server):
        storage_server.objects["informatica/temp/x.jpg"] = b"x"

        result = await pipeline.relocate_on_first_save(
            [_media("informatica/temp/x.jpg")], "order-9", "informatica/temp/", "informatica/"
        )

        assert result.files[0].path == "informatica/order-9/x.jpg"

    @pytest.mark.asyncio
    async def test_falha_mantem_path_temporario(self, pipeline, storage_server):
        storage_server.objects["temp/ok.jpg"] = b"1"
        storage_server.objects["temp/falha.jpg"] = b"2"
        storage_server.fail_move.add("temp/falha.jpg")

        result = await pipeline.relocate_on_first_save(
            [_media("temp/ok.jpg"), _media("temp/falha.jpg"), _media("order-1/ja.jpg")], "order-1"
        )

        assert [f.path for f in result.files] == ["order-1/ok.jpg", "temp/falha.jpg", "order-1/ja.jpg"]
        assert result.failed_paths == ["temp/falha.jpg"]


class TestSignedUrls:
    @pytest.mark.asyncio
    async def test_refresh_renova_urls_do_rascunho(self, pipeline, draft_store, storage_server):
        storage_server.objects["temp/a.jpg"] = b"a"
        media_set = PersistedMediaFiles(draft_store, "service_orders", 1)
        await media_set.set_media_files([_media("temp/a.jpg", url="http://expirada")])

        files = await media_set.refresh_signed_urls(pipeline.storage)

        assert files[0].url.startswith("http://storage.test/storage/v1/object/sign/")
        assert (await media_set.current())[0].url == files[0].url

    @pytest.mark.asyncio
    async def test_falha_mantem_url_anterior(self, pipeline, storage_server):
        storage_server.objects["temp/a.jpg"] = b"a"
        storage_server.fail_sign.add("temp/a.jpg")

        files = await pipeline.refresh_signed_urls([_media("temp/a.jpg", url="http://anterior")])

        assert files[0].url == "http://anterior"


class TestListOrderFiles:
    @pytest.mark.asyncio
    async def test_recupera_arquivos_orfaos(self, pipeline, storage_server):
        storage_server.objects.update({
            "order-1/1700000000000-aa.jpg": b"a",
            "order-1/1700000000001-bb.mp4": b"b",
            "order-1/.emptyFolderPlaceholder": b"",
            "order-1/sub/c.jpg": b"c",
        })

        files = await pipeline.list_order_files("order-1/")

        by_name = {f.name: f for f in files}
        assert set(by_name) == {"1700000000000-aa.jpg", "1700000000001-bb.mp4"}
        assert by_name["1700000000000-aa.jpg"].type == "image"
        assert by_name["1700000000001-bb.mp4"].type == "video"
        assert by_name["1700000000001-bb.mp4"].path == "order-1/1700000000001-bb.mp4"

    @pytest.mark.asyncio
    async def test_erro_na_listagem_devolve_vazio(self, pipeline, storage_server):
        storage_server.list_error = True
        assert await pipeline.list_order_files("order-1/") == []
