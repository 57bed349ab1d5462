"""Tests for quadrature.py - pinned quadrature point tables."""

import pytest

from credit_basket import (
    CopulaType,
    QUADRATURE_TABLE_VERSION,
    UnknownCopulaType,
    default_quadrature_points,
    quadrature_points_adjust,
    quadrature_points_adjust_for_copula,
    quadrature_points_adjust_for_detachments,
    quadrature_points_for_correlation,
    quadrature_points_from_accuracy,
    safe_quadrature_points_for_greeks,
)


class TestDefaultPoints:
    """Tests for the base point table."""

    def test_table_version(self):
        """Test that the pinned table version is unchanged."""
        assert QUADRATURE_TABLE_VERSION == 1

    @pytest.mark.parametrize("copula_type, size, points", [
        (CopulaType.GAUSS, 39, 25),
        (CopulaType.GAUSS, 40, 25),
        (CopulaType.GAUSS, 50, 26),
        (CopulaType.GAUSS, 125, 33),
        (CopulaType.STUDENT_T, 39, 12),
        (CopulaType.STUDENT_T, 50, 13),
        (CopulaType.DOUBLE_T, 10, 15),
        (CopulaType.CLAYTON, 5, 200),
        (CopulaType.CLAYTON, 5000, 200),
        (CopulaType.GUMBEL, 125, 100),
        (CopulaType.FRANK, 125, 100),
        (CopulaType.POISSON, 125, 0),
    ])
    def test_points(self, copula_type, size, points):
        """Test exact point counts by copula and basket size."""
        assert default_quadrature_points(copula_type, size) == points

    def test_unknown_copula(self):
        """Test that unknown tags are rejected."""
        with pytest.raises(UnknownCopulaType):
            default_quadrature_points("Mystery", 10)


class TestAdjustments:
    """Tests for tranche, correlation and Greek adjustments."""

    def test_unbumped_base(self):
        """Test the adjustment at a 9% attachment and zero width."""
        assert quadrature_points_adjust(0.09, 0.09) == 30

    def test_adjust_formula(self):
        """Test the literal adjustment formula."""
        for a, d in [(0.07, 0.10), (0.09, 0.12), (0.10, 0.15)]:
            expected = int(30 - 500 * abs(a - 0.09) - 100 * (d - a))
            assert quadrature_points_adjust(a, d) == max(expected, 0)
        assert quadrature_points_adjust(0.07, 0.10) > 0

    def test_adjust_never_negative(self):
        """Test that the adjustment floors at zero."""
        assert quadrature_points_adjust(0.0, 1.0) == 0
        assert quadrature_points_adjust(0.6, 1.0) == 0

    def test_copula_adjustment(self):
        """Test the largest adjustment over tranches and excluded families."""
        tranches = [(0.0, 0.03), (0.07, 0.10)]
        expected = max(quadrature_points_adjust(a, d) for a, d in tranches)
        assert quadrature_points_adjust_for_copula(CopulaType.GAUSS, tranches) == expected
        assert quadrature_points_adjust_for_copula(CopulaType.CLAYTON, tranches) == 0

    def test_detachment_adjustment(self):
        """Test pairwise detachments in the given order."""
        expected = max(quadrature_points_adjust(0.0, 0.03),
                       quadrature_points_adjust(0.03, 0.07),
                       quadrature_points_adjust(0.07, 0.10))
        assert quadrature_points_adjust_for_detachments([0.03, 0.07, 0.10]) == expected

    def test_unsorted_detachments_are_used_as_given(self):
        """Test that detachments are not sorted."""
        expected = max(quadrature_points_adjust(0.0, 0.10),
                       quadrature_points_adjust(0.10, 0.07))
        assert quadrature_points_adjust_for_detachments([0.10, 0.07]) == expected

    def test_correlation_adjustment(self):
        """Test the high correlation bump."""
        assert quadrature_points_for_correlation(25, CopulaType.GAUSS, 0.3) == 25
        assert quadrature_points_for_correlation(25, CopulaType.GAUSS, 0.9) == int(550 * 0.9) - 295
        assert quadrature_points_for_correlation(12, CopulaType.STUDENT_T, 0.9) == 12

    def test_greeks(self):
        """Test minimum points for sensitivities."""
        assert safe_quadrature_points_for_greeks(25, CopulaType.GAUSS) == 100
        assert safe_quadrature_points_for_greeks(25, CopulaType.GAUSS, for_gamma=True) == 200
        assert safe_quadrature_points_for_greeks(200, CopulaType.CLAYTON) == 200

    def test_accuracy(self):
        """Test splitting accuracy and point counts."""
        assert quadrature_points_from_accuracy(30) == (30, 0.0)
        assert quadrature_points_from_accuracy(1e-4) == (0, 1e-4)
        assert quadrature_points_from_accuracy(0, 1e-5) == (0, 1e-5)
