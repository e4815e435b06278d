"""
Tests for parsing, saving, and deriving pretrained model descriptions.

Covers:
- Layer classification by name prefix
- Schema validation errors
- Parameter reshaping and mean scaling
- Converting a torchvision VGG with the std folded into conv1_1
"""

import logging
from pathlib import Path
from typing import Any

import pytest
import torch
from pytest_mock import MockerFixture
from torch import nn

import neural_style_transfer.pretrained as nst_pretrained
from neural_style_transfer.constants import (
    IMAGENET_MEAN,
    IMAGENET_STD,
    TORCHVISION_VGG19_ID,
)
from neural_style_transfer.errors import ModelLoadError
from neural_style_transfer.features import build_feature_function
from neural_style_transfer.pretrained import (
    LayerKind,
    describe_vgg,
    export_model_description,
    load_model_description,
    parse_model_description,
    resolve_model,
)


class TestLayerKind:
    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("conv3_4", LayerKind.CONVOLUTION),
            ("relu5_1", LayerKind.ACTIVATION),
            ("pool2", LayerKind.POOLING),
            ("fc7", LayerKind.FULLY_CONNECTED),
            ("prob", LayerKind.PROBABILITY),
        ],
    )
    def test_from_name(self, name: str, kind: LayerKind) -> None:
        assert LayerKind.from_name(name) is kind

    def test_unknown_prefix_raises(self) -> None:
        with pytest.raises(ModelLoadError, match="Unrecognized layer type"):
            LayerKind.from_name("dropout1")


class TestParseModelDescription:
    def test_truncation_is_exclusive(
        self, tiny_description: dict[str, Any],
    ) -> None:
        model = parse_model_description(tiny_description, truncate_at="fc6")
        names = [layer.name for layer in model.layers]
        assert names == [
            "conv1_1", "relu1_1", "pool1", "conv2_1", "relu2_1", "pool2",
        ]

    def test_truncation_matches_prefix(
        self, tiny_description: dict[str, Any],
    ) -> None:
        model = parse_model_description(tiny_description, truncate_at="fc")
        assert model.layers[-1].name == "pool2"

    def test_without_truncation_keeps_all_layers(
        self, tiny_description: dict[str, Any],
    ) -> None:
        model = parse_model_description(tiny_description)
        assert len(model.layers) == len(tiny_description["layers"])

    def test_conv_bias_and_fc_weight_layout(
        self, tiny_description: dict[str, Any],
    ) -> None:
        model = parse_model_description(tiny_description)
        conv = model.layers[0]
        fc6 = next(layer for layer in model.layers if layer.name == "fc6")
        assert conv.weight.shape == (4, 3, 3, 3)
        assert conv.bias.shape == (1, 4, 1, 1)
        # fc weights are stored (out, in) and applied as (in, out)
        assert fc6.weight.shape == (8 * 4 * 4, 16)
        raw_fc6 = tiny_description["layers"][6]["weights"][0]
        assert torch.equal(fc6.weight, raw_fc6.t())

    def test_pool_geometry(self, tiny_description: dict[str, Any]) -> None:
        tiny_description["layers"][2] = {
            "name": "pool1", "pool": 3, "stride": [1, 2],
        }
        model = parse_model_description(tiny_description)
        assert model.layers[2].pool_size == (3, 3)
        assert model.layers[2].stride == (1, 2)

    def test_mean_is_scaled_to_unit_range(
        self, tiny_description: dict[str, Any],
    ) -> None:
        model = parse_model_description(tiny_description)
        assert model.mean.shape == (1, 3, 1, 1)
        assert torch.allclose(
            model.mean.flatten(), torch.tensor(IMAGENET_MEAN), atol=1e-6,
        )

    def test_full_average_image_is_reduced_per_channel(
        self, tiny_description: dict[str, Any],
    ) -> None:
        average = torch.zeros(2, 2, 3)
        average[..., 0] = 255.0
        average[0, 0, 2] = 102.0
        tiny_description["meta"]["normalization"]["average_image"] = average
        model = parse_model_description(tiny_description)
        assert model.mean.flatten().tolist() == pytest.approx(
            [1.0, 0.0, 0.1])

    def test_missing_layers_raises(self) -> None:
        with pytest.raises(ModelLoadError, match="no 'layers'"):
            parse_model_description({"meta": {}})

    def test_missing_weights_raises(
        self, tiny_description: dict[str, Any],
    ) -> None:
        del tiny_description["layers"][0]["weights"]
        with pytest.raises(ModelLoadError, match="requires a 'weights'"):
            parse_model_description(tiny_description)

    def test_wrong_conv_rank_raises(
        self, tiny_description: dict[str, Any],
    ) -> None:
        tiny_description["layers"][0]["weights"][0] = torch.ones(4, 27)
        with pytest.raises(ModelLoadError, match="must be 4-D"):
            parse_model_description(tiny_description)

    def test_unknown_layer_raises(
        self, tiny_description: dict[str, Any],
    ) -> None:
        tiny_description["layers"].insert(2, {"name": "norm1"})
        with pytest.raises(ModelLoadError, match="norm1"):
            parse_model_description(tiny_description)

    def test_unknown_layer_after_truncation_is_ignored(
        self, tiny_description: dict[str, Any],
    ) -> None:
        tiny_description["layers"].append({"name": "norm9"})
        model = parse_model_description(tiny_description, truncate_at="fc6")
        assert model.layers[-1].name == "pool2"

    def test_missing_mean_raises(
        self, tiny_description: dict[str, Any],
    ) -> None:
        del tiny_description["meta"]
        with pytest.raises(ModelLoadError, match="average_image"):
            parse_model_description(tiny_description)

    @pytest.mark.parametrize("layers", [None, 3, "conv1_1"])
    def test_non_list_layers_raises(
        self, tiny_description: dict[str, Any], layers: Any,
    ) -> None:
        tiny_description["layers"] = layers
        with pytest.raises(ModelLoadError, match="must be a list"):
            parse_model_description(tiny_description)

    @pytest.mark.parametrize(
        "average", [[1.0, 2.0], ["red", "green", "blue"], {"r": 1}],
    )
    def test_malformed_mean_raises(
        self, tiny_description: dict[str, Any], average: Any,
    ) -> None:
        tiny_description["meta"]["normalization"]["average_image"] = average
        with pytest.raises(ModelLoadError, match="average_image"):
            parse_model_description(tiny_description)


class TestModelFiles:
    def test_export_then_load(
        self,
        tmp_path: Path,
        tiny_description: dict[str, Any],
    ) -> None:
        path = export_model_description(
            tiny_description, tmp_path / "sub" / "model.pth",
        )
        loaded = load_model_description(path)
        assert [entry["name"] for entry in loaded["layers"]] == [
            entry["name"] for entry in tiny_description["layers"]
        ]
        assert torch.equal(
            loaded["layers"][0]["weights"][0],
            tiny_description["layers"][0]["weights"][0],
        )

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Model file not found"):
            load_model_description(tmp_path / "absent.pth")

    def test_garbage_file(self, tmp_path: Path) -> None:
        path = tmp_path / "garbage.pth"
        path.write_bytes(b"\x00\x01 not a checkpoint")
        with pytest.raises(ModelLoadError, match="Cannot decode"):
            load_model_description(path)

    def test_non_mapping_payload(self, tmp_path: Path) -> None:
        path = tmp_path / "list.pth"
        torch.save([1, 2, 3], path)
        with pytest.raises(ModelLoadError, match="does not hold a mapping"):
            load_model_description(path)

    def test_resolve_model_reads_paths(self, tiny_model_file: Path) -> None:
        raw = resolve_model(str(tiny_model_file))
        assert "layers" in raw

    def test_resolve_model_builtin(self, mocker: MockerFixture) -> None:
        describe = mocker.patch.object(
            nst_pretrained, "describe_torchvision_vgg19",
            return_value={"layers": []},
        )
        assert resolve_model(TORCHVISION_VGG19_ID) == {"layers": []}
        describe.assert_called_once_with()


class _TinyVGG(nn.Module):
    """Module with the same attribute layout as torchvision's VGG."""

    def __init__(self) -> None:
        super().__init__()
        torch.manual_seed(0)
        self.features = nn.Sequential(
            nn.Conv2d(3, 4, 3, padding=1),
            nn.ReLU(inplace=True),
            nn.Conv2d(4, 4, 3, padding=1),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(kernel_size=2, stride=2),
            nn.Conv2d(4, 6, 3, padding=1),
            nn.ReLU(inplace=True),
            nn.MaxPool2d(kernel_size=2, stride=2),
        )
        self.classifier = nn.Sequential(
            nn.Linear(6 * 2 * 2, 8),
            nn.ReLU(inplace=True),
            nn.Dropout(),
            nn.Linear(8, 8),
            nn.ReLU(inplace=True),
            nn.Dropout(),
            nn.Linear(8, 3),
        )


class TestDescribeVGG:
    def test_layer_names(self) -> None:
        description = describe_vgg(_TinyVGG())
        names = [entry["name"] for entry in description["layers"]]
        assert names == [
            "conv1_1", "relu1_1", "conv1_2", "relu1_2", "pool1",
            "conv2_1", "relu2_1", "pool2",
            "fc6", "relu6", "fc7", "relu7", "fc8", "prob",
        ]

    def test_mean_stored_in_pixel_scale(self) -> None:
        description = describe_vgg(_TinyVGG())
        average = description["meta"]["normalization"]["average_image"]
        assert average == pytest.approx([m * 255.0 for m in IMAGENET_MEAN])

    def test_std_folded_into_first_conv_only(self) -> None:
        vgg = _TinyVGG()
        description = describe_vgg(vgg)
        std = torch.tensor(IMAGENET_STD).view(1, 3, 1, 1)
        first = description["layers"][0]["weights"][0]
        second = description["layers"][2]["weights"][0]
        assert torch.allclose(first, vgg.features[0].weight / std)
        assert torch.equal(second, vgg.features[2].weight)

    def test_conv_features_match_torchvision_normalization(self) -> None:
        """Mean-only input through folded weights equals mean/std input."""
        vgg = _TinyVGG().eval()
        model = parse_model_description(describe_vgg(vgg))
        extractor, _ = build_feature_function(model, truncate_at_layer="fc")

        gen = torch.Generator().manual_seed(4)
        pixels = torch.rand(1, 3, 8, 8, generator=gen)
        mean = torch.tensor(IMAGENET_MEAN).view(1, 3, 1, 1)
        std = torch.tensor(IMAGENET_STD).view(1, 3, 1, 1)

        ours = extractor(pixels - model.mean)[0]
        with torch.no_grad():
            reference = vgg.features[0]((pixels - mean) / std)
        assert torch.allclose(ours, reference, atol=1e-5)


class TestLoadTorchvisionVGG19:
    def test_cached_weights_logged(
        self,
        mocker: MockerFixture,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO)
        mocker.patch("torch.hub.get_dir", return_value=str(tmp_path))
        weights_name = Path(
            nst_pretrained.VGG19_Weights.IMAGENET1K_V1.url,
        ).name
        (tmp_path / "checkpoints").mkdir()
        (tmp_path / "checkpoints" / weights_name).write_bytes(b"")
        fake_vgg = mocker.MagicMock()
        fake_vgg.eval.return_value = fake_vgg
        vgg_ctor = mocker.patch.object(
            nst_pretrained, "vgg19", return_value=fake_vgg,
        )

        result = nst_pretrained._load_torchvision_vgg19()  # noqa: SLF001

        assert result is fake_vgg
        vgg_ctor.assert_called_once()
        assert "Using cached VGG19 weights" in caplog.text

    def test_download_logged(
        self,
        mocker: MockerFixture,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO)
        mocker.patch("torch.hub.get_dir", return_value=str(tmp_path))
        mocker.patch.object(nst_pretrained, "vgg19")
        nst_pretrained._load_torchvision_vgg19()  # noqa: SLF001
        assert "Downloading VGG19 weights" in caplog.text
