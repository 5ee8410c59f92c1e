"""
Permission model tests.

  1. Pure bit checks (has_permission / has_any / has_all)
  2. Packing and unpacking capabilities
  3. Effective bits (role | extra, inactive users)
  4. Cached DB resolution and invalidation
"""

from types import SimpleNamespace

import pytest

from sigedoc.core.identity import Identity
from sigedoc.services import permission_service as ps
from sigedoc.services.permission_service import Capability as C


class TestBitChecks:
    def test_has_permission_examples(self):
        assert ps.has_permission(0b0110, 0b0010) is True
        assert ps.has_permission(0b0100, 0b0010) is False

    def test_has_any_examples(self):
        assert ps.has_any(0b0100, [0b0010, 0b0100]) is True
        assert ps.has_any(0b0001, [0b0010, 0b0100]) is False

    def test_has_all_examples(self):
        assert ps.has_all(0b0110, [0b0010, 0b0100]) is True
        assert ps.has_all(0b0010, [0b0010, 0b0100]) is False

    def test_none_bits_means_no_permissions(self):
        assert ps.has_permission(None, C.VIEW) is False
        assert ps.has_any(None, [C.VIEW, C.EDIT]) is False

    def test_empty_flag_lists(self):
        assert ps.has_any(0xFF, []) is False
        assert ps.has_all(0, []) is True

    def test_capability_members_and_ints_mix(self):
        bits = int(C.CREATE | C.DERIVE)
        assert ps.has_permission(bits, C.DERIVE)
        assert ps.has_all(bits, [C.CREATE, 16])

    def test_combined_flag_requires_every_bit(self):
        assert ps.has_permission(C.EDIT, C.EDIT | C.DELETE) is False
        assert ps.has_permission(C.EDIT | C.DELETE | C.VIEW, C.EDIT | C.DELETE) is True


class TestPacking:
    def test_catalog_values_are_stable(self):
        assert [int(c) for c in C] == [1, 2, 4, 8, 16, 32, 64, 128]
        assert ps.ALL_BITS == 255

    def test_to_capabilities_ignores_unknown_bits(self):
        assert ps.to_capabilities(0b1_0000_0000 | C.VIEW) == frozenset({C.VIEW})

    def test_to_bits_accepts_names(self):
        assert ps.to_bits(["view", "DERIVE"]) == 24
        assert ps.to_bits([C.ADMIN]) == 128

    def test_to_bits_rejects_unknown_name(self):
        with pytest.raises(ValueError):
            ps.to_bits(["FLY"])

    def test_capability_names_sorted(self):
        assert ps.capability_names(C.VIEW | C.AUDIT) == ["AUDIT", "VIEW"]

    def test_catalog_lists_every_capability(self):
        entries = ps.catalog()
        assert len(entries) == 8
        assert entries[0] == {"name": "CREATE", "bit": 1, "label": ps.CAPABILITY_LABELS[C.CREATE]}

    def test_identity_exposes_named_capabilities(self):
        ident = Identity(user_id=1, home_area_id=2, permission_bits=C.VIEW | C.DERIVE)
        assert ident.can(C.DERIVE)
        assert not ident.can(C.EDIT)
        assert ident.to_dict()["capabilities"] == ["DERIVE", "VIEW"]


class TestEffectiveBits:
    def test_role_bits_or_extra_bits(self, world, make_user):
        user = make_user(world.viewer_role, world.area_b, extra_permissions=int(C.EXPORT))
        assert ps.effective_bits(user) == int(C.VIEW | C.EXPORT)

    def test_inactive_user_has_no_bits(self, world, make_user):
        user = make_user(world.admin_role, world.area_a, status="inactive")
        assert ps.effective_bits(user) == 0

    def test_missing_user_has_no_bits(self):
        assert ps.effective_bits(None) == 0

    def test_user_without_role_keeps_extra_bits(self):
        user = SimpleNamespace(status="active", role=None, extra_permissions=int(C.VIEW))
        assert ps.effective_bits(user) == int(C.VIEW)


class TestCachedResolution:
    def test_cache_serves_until_invalidated(self, world):
        from sigedoc.models import db

        uid = world.viewer.id
        assert ps.get_user_permission_bits(uid) == int(C.VIEW)

        world.viewer_role.permissions = int(C.VIEW | C.EDIT)
        db.session.commit()
        assert ps.get_user_permission_bits(uid) == int(C.VIEW)

        ps.invalidate_cache(uid)
        assert ps.get_user_permission_bits(uid) == int(C.VIEW | C.EDIT)

    def test_user_has_permission(self, world):
        assert ps.user_has_permission(world.clerk.id, C.CREATE)
        assert not ps.user_has_permission(world.clerk.id, C.ADMIN)

    def test_unknown_user_resolves_to_zero(self, world):
        assert ps.get_user_permission_bits(99999) == 0
