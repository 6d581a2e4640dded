"""
kubeprov.provision
------------------

Turn a host into a Kubernetes node and keep the join parameters of the
cluster fresh.

:py:mod:`kubeprov.provision.node` runs ``kubeadm`` on this host, either
initialising a new cluster or joining an existing one.

:py:mod:`kubeprov.provision.schedule` writes the cron job and the
logrotate policy which store new join parameters every few hours.
"""
